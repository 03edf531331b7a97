"""Tests for conditional coefficients and willingness to accept."""

import warnings

import numpy as np
import pandas as pd
import pytest

from flexaccept import (
    ChoicePanel,
    ModelArtifact,
    ModelSpecification,
    compute_wta,
    compute_wta_table,
    derive_conditional_parameters,
    simulated_log_likelihood,
)
from flexaccept.algorithms.draws import HaltonDrawSequence
from flexaccept.core.exceptions import DegenerateRatioError, NumericalInstabilityWarning
from flexaccept.core.result import ConditionalResult

from conftest import MIXED_ATTRIBUTES, make_tioli_panel


class TestComputeWta:
    """Scalar WTA = -b_attr / b_cost."""

    def test_sign_convention(self):
        """b_attr = -10, b_cost = -2 gives WTA = -5."""
        assert compute_wta(-10.0, -2.0) == -5.0

    def test_positive_cost_coefficient(self):
        """With a positive compensation coefficient a disliked attribute has positive WTA."""
        assert compute_wta(-0.8, 0.1) == pytest.approx(8.0)

    def test_near_zero_denominator(self):
        """Denominators below epsilon raise instead of returning inf."""
        with pytest.raises(DegenerateRatioError):
            compute_wta(-1.0, 1e-9, epsilon=1e-6)

    def test_non_finite(self):
        """NaN inputs are degenerate."""
        with pytest.raises(DegenerateRatioError):
            compute_wta(np.nan, -2.0)


def _conditional(means, random=()):
    attributes = ("distance", "compensation")
    n = len(means)
    return ConditionalResult(
        replicate_index=3,
        attributes=attributes,
        random_attributes=random,
        respondent_ids=np.arange(1, n + 1),
        conditional_means=np.asarray(means, dtype=float),
        conditional_variances=np.zeros((n, 2)),
        effective_draws=np.ones(n),
        log_likelihood=-1.0,
        unconditional_means=np.zeros(2),
        unconditional_variances=np.zeros(2),
    )


class TestComputeWtaTable:
    """Respondent-level WTA with degenerate denominators flagged."""

    def test_values(self):
        """Each respondent's WTA uses that respondent's coefficients."""
        table = compute_wta_table(
            _conditional([[-10.0, -2.0], [-1.0, 0.5]]), ["distance"], "compensation"
        )
        np.testing.assert_allclose(table["wta_distance"], [-5.0, 2.0])
        assert not table["wta_flagged"].any()

    def test_flagged_rows(self):
        """A near-zero cost coefficient flags the row and sets WTA missing."""
        with pytest.warns(NumericalInstabilityWarning):
            table = compute_wta_table(
                _conditional([[-10.0, -2.0], [-1.0, 1e-9]]), ["distance"], "compensation"
            )
        assert table["wta_flagged"].tolist() == [False, True]
        assert np.isnan(table["wta_distance"].iloc[1])
        assert np.isfinite(table["wta_distance"]).sum() == 1

    def test_unknown_attribute(self):
        """Only model attributes have a WTA."""
        with pytest.raises(KeyError):
            compute_wta_table(_conditional([[-1.0, -1.0]]), ["range"], "compensation")


class TestDeriveConditionalParameters:
    """Likelihood-weighted posterior means."""

    def test_shapes(self, mixed_artifact, mixed_panel):
        """One row per respondent and one column per attribute."""
        result = derive_conditional_parameters(mixed_artifact, mixed_panel, n_draws=100)
        assert result.conditional_means.shape == (40, 3)
        assert result.to_dataframe().columns.tolist() == [
            "respondent_id", "b_contract", "b_distance", "b_compensation",
        ]
        np.testing.assert_array_equal(result.respondent_ids, np.arange(1, 41))

    def test_fixed_coefficients_unchanged(self, mixed_artifact, mixed_panel):
        """Coefficients without a mixing distribution equal the population value."""
        result = derive_conditional_parameters(mixed_artifact, mixed_panel, n_draws=100)
        np.testing.assert_allclose(result.conditional_means[:, 2], 0.1)
        np.testing.assert_allclose(result.conditional_variances[:, 2], 0.0, atol=1e-15)

    def test_uniform_weights_give_draw_mean(self):
        """Choices that do not depend on the random coefficient leave the draw mean."""
        spec = ModelSpecification(("contract", "z"), random=("z",))
        artifact = ModelArtifact(spec, np.array([0.3, 1.0, 2.0]), "EV", 0)
        # z is zero on every row, so every draw explains the choices equally well
        data = pd.DataFrame(
            {
                "respondent_id": [1, 1, 2, 2],
                "scenario_id": [1, 1, 1, 1],
                "alternative": ["contract", "opt_out"] * 2,
                "chosen": [True, False, False, True],
                "contract": [1.0, 0.0, 1.0, 0.0],
                "z": [0.0, 0.0, 0.0, 0.0],
            }
        )
        panel = ChoicePanel(data=data, attributes=("contract", "z"))
        result = derive_conditional_parameters(artifact, panel, n_draws=64, burn_in=15)

        draws = HaltonDrawSequence(1, 64, 15)
        for pos in range(2):
            expected = 1.0 + 2.0 * draws.block(pos)[:, 0].mean()
            assert result.conditional_means[pos, 1] == pytest.approx(expected)
        np.testing.assert_allclose(result.effective_draws, 64.0)

    def test_choices_shift_conditional_means(self, mixed_artifact):
        """Respondents who always accept get a higher contract coefficient."""
        rows = []
        for r, accept in ((1, True), (2, False)):
            for s in range(1, 9):
                rows.append((r, s, "contract", accept, 1.0, 2.0, 10.0))
                rows.append((r, s, "opt_out", not accept, 0.0, 0.0, 0.0))
        data = pd.DataFrame(
            rows,
            columns=["respondent_id", "scenario_id", "alternative", "chosen", *MIXED_ATTRIBUTES],
        )
        panel = ChoicePanel(data=data, attributes=MIXED_ATTRIBUTES)
        result = derive_conditional_parameters(mixed_artifact, panel, n_draws=500)
        assert result.conditional_means[0, 0] > 0.5 > result.conditional_means[1, 0]

    def test_partition_invariance(self, mixed_artifact):
        """A respondent's result depends only on its position in the panel."""
        data = make_tioli_panel(6, 5, seed=3)
        full = ChoicePanel(data=data, attributes=MIXED_ATTRIBUTES)
        a = derive_conditional_parameters(mixed_artifact, full, n_draws=80)
        b = derive_conditional_parameters(mixed_artifact, full.copy(), n_draws=80)
        np.testing.assert_array_equal(a.conditional_means, b.conditional_means)

    def test_log_likelihood_consistent(self, mixed_artifact, mixed_panel):
        """The result carries the simulated log-likelihood of the panel."""
        result = derive_conditional_parameters(mixed_artifact, mixed_panel, n_draws=100)
        ll = simulated_log_likelihood(mixed_artifact, mixed_panel, n_draws=100)
        assert result.log_likelihood == pytest.approx(ll)
        assert ll < 0

    def test_moment_diagnostic(self, mixed_artifact, mixed_panel):
        """Conditional moments reproduce the population moments roughly."""
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", NumericalInstabilityWarning)
            result = derive_conditional_parameters(mixed_artifact, mixed_panel, n_draws=400)
        diag = result.moment_diagnostic()
        assert diag.index.tolist() == ["contract", "distance"]
        assert np.all(np.isfinite(diag["variance_ratio"]))
        assert diag.loc["distance", "mean_ratio"] == pytest.approx(1.0, abs=0.5)
        assert diag.loc["contract", "unconditional_variance"] == pytest.approx(1.0)
        assert "Moment Diagnostic" in result.summary()
