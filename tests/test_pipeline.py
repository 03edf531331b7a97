"""End-to-end tests for the draw / replicate / aggregate pipeline."""

import json

import numpy as np
import pandas as pd
import pytest

from flexaccept import (
    ChoicePanel,
    KrinskyRobbPipeline,
    ModelArtifact,
    PipelineConfig,
    compute_average_partial_effect,
    default_config,
    validated_artifact,
)
from flexaccept.core.config import PartialEffectSpec
from flexaccept.core.exceptions import (
    DataQualityWarning,
    DataValidationError,
    SpecificationMismatchError,
)
from flexaccept.io import ExperimentInputs
from flexaccept.pipeline import acceptance_statistic, regression_statistic


@pytest.fixture
def fixed_panel() -> ChoicePanel:
    """Ten respondents answering the four x scenarios."""
    rng = np.random.default_rng(5)
    rows = []
    for r in range(1, 11):
        for s, x in enumerate((1.0, 2.0, 3.0, 4.0), start=1):
            accept = bool(rng.random() < 1.0 / (1.0 + np.exp(-(1.0 - 0.5 * x))))
            rows.append((r, s, "contract", accept, 1.0, x))
            rows.append((r, s, "opt_out", not accept, 0.0, 0.0))
    data = pd.DataFrame(
        rows, columns=["respondent_id", "scenario_id", "alternative", "chosen", "contract", "x"]
    )
    return ChoicePanel(data=data, attributes=("contract", "x"), experiment="EV")


@pytest.fixture
def fixed_config(tmp_path) -> PipelineConfig:
    return PipelineConfig(
        experiment="EV",
        n_replicates=200,
        seed=42,
        n_draws=1,
        n_jobs=1,
        partial_effects=(PartialEffectSpec("ape:x", "x"),),
        output_dir=tmp_path,
    )


class TestFixedModelEndToEnd:
    """Krinsky-Robb intervals of a fixed-coefficient logit."""

    def test_ape_centered_on_point_estimate(
        self, fixed_config, fixed_estimate, fixed_spec, fixed_design, fixed_panel
    ):
        """The replicate mean APE is close to the point-estimate APE."""
        inputs = ExperimentInputs(fixed_estimate, fixed_spec, fixed_panel, pd.DataFrame())
        result = KrinskyRobbPipeline(fixed_config).run(inputs, fixed_design)

        point = compute_average_partial_effect(
            validated_artifact(fixed_estimate, fixed_spec), fixed_design, "x"
        )
        ape = result.aggregate("ape:x")
        assert ape.n_usable_replicates == 200
        assert ape.mean == pytest.approx(point, abs=0.015)
        assert ape.ci_lower < point < ape.ci_upper
        assert result.validated_statistics["ape:x"] == pytest.approx(point)

    def test_acceptance_intervals(
        self, fixed_config, fixed_estimate, fixed_spec, fixed_design, fixed_panel
    ):
        """Every scenario gets an acceptance probability interval."""
        inputs = ExperimentInputs(fixed_estimate, fixed_spec, fixed_panel, pd.DataFrame())
        result = KrinskyRobbPipeline(fixed_config).run(inputs, fixed_design)

        for scenario_id in fixed_design.data["scenario_id"].unique():
            agg = result.aggregate(acceptance_statistic(scenario_id))
            assert 0.0 <= agg.ci_lower <= agg.ci_upper <= 1.0

        predictions = result.predictions.data
        contract = predictions["alternative"] == "contract"
        assert (predictions.loc[contract, "p_ci_lower"] <= predictions.loc[contract, "p_validated"]).all()
        assert predictions.loc[~contract, "p_ci_lower"].isna().all()
        assert (fixed_config.output_dir / "EV" / "aggregates.csv").is_file()


class TestMixedModel:
    """Full statistic set on the mixed model."""

    def _inputs(self, mixed_estimate, mixed_spec, mixed_panel, covariates):
        return ExperimentInputs(mixed_estimate, mixed_spec, mixed_panel, covariates)

    def test_statistics(
        self, mixed_config, mixed_estimate, mixed_spec, mixed_panel, covariates, mixed_design
    ):
        """APEs, log-likelihood, WTA and regression terms are aggregated."""
        inputs = self._inputs(mixed_estimate, mixed_spec, mixed_panel, covariates)
        result = KrinskyRobbPipeline(mixed_config).run(inputs, mixed_design)

        names = set(result.aggregates["statistic_name"])
        assert {"ape:distance", "ape:compensation", "log_likelihood", "wta_mean:distance"} <= names
        assert regression_statistic("basic", "distance", "region[west]") in names
        assert result.n_completed == 5
        assert "of 5 intended" in result.summary()

    def test_unknown_wta_attribute(
        self, mixed_config, mixed_estimate, mixed_spec, mixed_panel, covariates, mixed_design
    ):
        """Configuration mistakes are fatal before anything is written."""
        config = mixed_config.with_overrides(wta_attributes=("range",))
        inputs = self._inputs(mixed_estimate, mixed_spec, mixed_panel, covariates)
        with pytest.raises(SpecificationMismatchError):
            KrinskyRobbPipeline(config).run(inputs, mixed_design)
        assert not (config.output_dir / "EV").exists()

    def test_covariates_of_other_respondents(
        self, mixed_config, mixed_spec, mixed_panel, covariates, mixed_design
    ):
        """Covariates that match no panel respondent are fatal at startup."""
        covariates["respondent_id"] = covariates["respondent_id"] + 1000
        pipeline = KrinskyRobbPipeline(mixed_config)
        with pytest.raises(DataValidationError):
            pipeline.validate_inputs(mixed_spec, mixed_design, mixed_panel, covariates)

    def test_covariate_ids_with_other_dtype(
        self, mixed_config, mixed_spec, mixed_panel, covariates, mixed_design
    ):
        """String ids never match integer panel ids."""
        covariates["respondent_id"] = covariates["respondent_id"].astype(str)
        pipeline = KrinskyRobbPipeline(mixed_config)
        with pytest.raises(DataValidationError):
            pipeline.validate_inputs(mixed_spec, mixed_design, mixed_panel, covariates)

    def test_partial_covariate_coverage(
        self, mixed_config, mixed_spec, mixed_panel, covariates, mixed_design
    ):
        """Respondents without covariates are reported at startup."""
        pipeline = KrinskyRobbPipeline(mixed_config)
        with pytest.warns(DataQualityWarning, match="cover 36 of 40"):
            resolved = pipeline.validate_inputs(
                mixed_spec, mixed_design, mixed_panel, covariates.iloc[4:]
            )
        assert resolved[0].n_respondents == 36

    def test_regression_failure_drops_replicate(
        self, mixed_config, mixed_estimate, mixed_spec, mixed_panel, covariates, mixed_design
    ):
        """A replicate whose regression cannot be fitted is dropped and recorded."""
        pipeline = KrinskyRobbPipeline(mixed_config)
        resolved = pipeline.validate_inputs(mixed_spec, mixed_design, mixed_panel, covariates)
        pipeline.draw(mixed_estimate, mixed_spec)

        # A zero compensation coefficient flags every WTA, leaving no observations
        coefficients = pipeline.store.load("EV", 3).coefficients.copy()
        coefficients[mixed_spec.index_of("compensation")] = 0.0
        pipeline.store.save("EV", 3, ModelArtifact(mixed_spec, coefficients, "EV", 3))

        with pytest.warns(DataQualityWarning):
            failures = pipeline.replicate(mixed_design, mixed_panel, resolved)
        assert [(f.replicate_index, f.error_type) for f in failures] == [(3, "RegressionError")]

        aggregates = pipeline.aggregate().set_index("statistic_name")
        assert aggregates.loc["ape:distance", "n_usable_replicates"] == 4
        assert aggregates.loc["ape:distance", "n_excluded"] == 1
        table = pd.read_parquet(mixed_config.output_dir / "EV" / "failures.parquet")
        assert table["replicate_index"].tolist() == [3]
        assert table["error_type"].tolist() == ["RegressionError"]


class TestFailureAndResume:
    """Recoverable failures and idempotent stages."""

    def test_missing_artifact_drops_replicate(
        self, fixed_config, fixed_estimate, fixed_spec, fixed_design, fixed_panel
    ):
        """A replicate without an artifact is dropped, not fatal."""
        config = fixed_config.with_overrides(n_replicates=20)
        pipeline = KrinskyRobbPipeline(config)
        pipeline.draw(fixed_estimate, fixed_spec)
        pipeline.store.path("EV", 7).unlink()

        failures = pipeline.replicate(fixed_design, fixed_panel, ())
        assert [f.replicate_index for f in failures] == [7]
        assert failures[0].error_type == "ArtifactNotFoundError"

        aggregates = pipeline.aggregate().set_index("statistic_name")
        assert aggregates.loc["ape:x", "n_usable_replicates"] == 19
        assert aggregates.loc["ape:x", "n_excluded"] == 1
        assert (config.output_dir / "EV" / "failures.parquet").is_file()

    def test_second_draw_writes_nothing(self, fixed_config, fixed_estimate, fixed_spec):
        """Re-running the draw stage keeps the stored artifacts."""
        pipeline = KrinskyRobbPipeline(fixed_config.with_overrides(n_replicates=10))
        first = pipeline.draw(fixed_estimate, fixed_spec)
        assert first == list(range(0, 11))
        assert pipeline.draw(fixed_estimate, fixed_spec) == []

    def test_resume_replicates(
        self, fixed_config, fixed_estimate, fixed_spec, fixed_design, fixed_panel
    ):
        """Only replicates without statistics are recomputed."""
        pipeline = KrinskyRobbPipeline(fixed_config.with_overrides(n_replicates=10))
        pipeline.draw(fixed_estimate, fixed_spec)
        pipeline.replicate(fixed_design, fixed_panel, (), indices=[0, 1, 2, 3])
        assert pipeline.pending_indices() == list(range(4, 11))
        pipeline.replicate(fixed_design, fixed_panel, ())
        assert pipeline.pending_indices() == []

    def test_draws_match_between_runs(self, tmp_path, fixed_estimate, fixed_spec):
        """Two runs with the same seed store identical artifacts."""
        a = KrinskyRobbPipeline(PipelineConfig("EV", n_replicates=5, output_dir=tmp_path / "a"))
        b = KrinskyRobbPipeline(PipelineConfig("EV", n_replicates=5, output_dir=tmp_path / "b"))
        a.draw(fixed_estimate, fixed_spec)
        b.draw(fixed_estimate, fixed_spec)
        for r in range(6):
            assert a.store.path("EV", r).read_bytes() == b.store.path("EV", r).read_bytes()

    def test_rerun_failure_discards_earlier_statistics(
        self, fixed_config, fixed_estimate, fixed_spec, fixed_design, fixed_panel
    ):
        """A replicate that fails on a forced re-run no longer contributes."""
        pipeline = KrinskyRobbPipeline(fixed_config.with_overrides(n_replicates=10))
        pipeline.draw(fixed_estimate, fixed_spec)
        assert pipeline.replicate(fixed_design, fixed_panel, ()) == []

        pipeline.store.path("EV", 7).unlink()
        failures = pipeline.replicate(fixed_design, fixed_panel, (), overwrite=True)
        assert [f.replicate_index for f in failures] == [7]
        assert not pipeline.sink.has("EV", 7)

        aggregates = pipeline.aggregate().set_index("statistic_name")
        assert aggregates.loc["ape:x", "n_usable_replicates"] == 9


class TestParallelWorkers:
    """Replicate tasks in a process pool."""

    def test_matches_sequential_run(
        self, tmp_path, fixed_config, fixed_estimate, fixed_spec, fixed_design, fixed_panel
    ):
        """Two workers give the same aggregates as one."""
        inputs = ExperimentInputs(fixed_estimate, fixed_spec, fixed_panel, pd.DataFrame())
        results = []
        for n_jobs in (1, 2):
            config = fixed_config.with_overrides(
                n_replicates=12, n_jobs=n_jobs, output_dir=tmp_path / f"jobs{n_jobs}"
            )
            results.append(KrinskyRobbPipeline(config).run(inputs, fixed_design))

        sequential, parallel = results
        assert parallel.n_completed == 12
        assert parallel.failures == ()
        pd.testing.assert_frame_equal(sequential.aggregates, parallel.aggregates)


class TestConfig:
    """Run configuration."""

    def test_default_config(self):
        """Paper defaults cover every non-monetary attribute."""
        config = default_config("HP", n_replicates=10)
        assert config.n_replicates == 10
        assert "temperature_drop_c" in config.wta_attributes
        assert "ape:compensation" in [e.name for e in config.partial_effects]

    def test_json_round_trip(self, mixed_config):
        """to_dict / from_dict preserve the configuration."""
        data = json.loads(json.dumps(mixed_config.to_dict()))
        assert PipelineConfig.from_dict(data) == mixed_config

    def test_invalid(self):
        """Unknown experiments and non-positive R are rejected."""
        with pytest.raises(ValueError):
            PipelineConfig("XX")
        with pytest.raises(ValueError):
            PipelineConfig("EV", n_replicates=0)
