"""Tests for Krinsky-Robb replicate draws and zero-iteration freezing."""

import numpy as np
import pytest

from flexaccept import (
    PointEstimate,
    draw_replicates,
    freeze_artifact,
    simulated_log_likelihood,
    validated_artifact,
)
from flexaccept.algorithms.replicates import covariance_factor, replicate_coefficients
from flexaccept.core.exceptions import (
    InvalidArgumentError,
    NumericalError,
    SpecificationMismatchError,
)


class TestReproducibility:
    """The replicate stream is a pure function of the seed."""

    def test_bit_identical_across_runs(self, fixed_estimate, fixed_spec):
        """Two runs with the same seed give byte-identical coefficients."""
        a = [r.coefficients.tobytes() for r in draw_replicates(fixed_estimate, 50, 42, fixed_spec)]
        b = [r.coefficients.tobytes() for r in draw_replicates(fixed_estimate, 50, 42, fixed_spec)]
        assert a == b

    def test_different_seeds_differ(self, fixed_estimate):
        """Different seeds give different draws."""
        a = replicate_coefficients(fixed_estimate, 10, seed=1)
        b = replicate_coefficients(fixed_estimate, 10, seed=2)
        assert not np.array_equal(a, b)

    def test_prefix_stable(self, fixed_estimate):
        """Replicate r does not depend on the total number of replicates."""
        short = replicate_coefficients(fixed_estimate, 20, seed=42)
        long = replicate_coefficients(fixed_estimate, 100, seed=42)
        np.testing.assert_array_equal(short, long[:20])

    def test_indices_start_at_one(self, fixed_estimate, fixed_spec):
        """Replicates are numbered 1..R."""
        indices = [r.replicate_index for r in draw_replicates(fixed_estimate, 4, 0, fixed_spec)]
        assert indices == [1, 2, 3, 4]


class TestDistribution:
    """Draws follow N(b, V)."""

    def test_moments(self, fixed_estimate):
        """Sample mean and covariance approach b and V."""
        draws = replicate_coefficients(fixed_estimate, 20000, seed=0)
        np.testing.assert_allclose(draws.mean(axis=0), [1.0, -0.5], atol=0.01)
        np.testing.assert_allclose(np.cov(draws.T), fixed_estimate.covariance, atol=0.002)

    def test_zero_variance_parameter(self):
        """A parameter with zero variance is held at its mean."""
        estimate = PointEstimate(
            coefficients=np.array([1.0, 2.0]),
            covariance=np.array([[0.5, 0.0], [0.0, 0.0]]),
        )
        draws = replicate_coefficients(estimate, 100, seed=5)
        np.testing.assert_allclose(draws[:, 1], 2.0, atol=1e-12)


class TestValidation:
    """Invalid inputs are rejected before any draw."""

    def test_non_positive_replicates(self, fixed_estimate, fixed_spec):
        """R <= 0 is an invalid argument."""
        with pytest.raises(InvalidArgumentError):
            draw_replicates(fixed_estimate, 0, 42, fixed_spec)
        with pytest.raises(InvalidArgumentError):
            replicate_coefficients(fixed_estimate, -1, seed=1)
        assert issubclass(InvalidArgumentError, ValueError)

    def test_not_psd(self, fixed_spec):
        """A covariance with a negative eigenvalue is a numerical error."""
        estimate = PointEstimate(
            coefficients=np.array([1.0, -0.5]),
            covariance=np.array([[1.0, 2.0], [2.0, 1.0]]),
        )
        with pytest.raises(NumericalError):
            draw_replicates(estimate, 10, 42, fixed_spec)

    def test_asymmetric(self):
        """An asymmetric covariance is a numerical error."""
        with pytest.raises(NumericalError):
            covariance_factor(np.array([[1.0, 0.5], [0.0, 1.0]]))

    def test_wrong_specification(self, fixed_estimate, mixed_spec):
        """b must fit the specification."""
        with pytest.raises(SpecificationMismatchError):
            draw_replicates(fixed_estimate, 10, 42, mixed_spec)


class TestFreeze:
    """Zero-iteration freezing of coefficient vectors."""

    def test_validated_artifact(self, fixed_estimate, fixed_spec):
        """The validated artifact carries the point estimate as replicate 0."""
        artifact = validated_artifact(fixed_estimate, fixed_spec)
        assert artifact.replicate_index == 0
        assert artifact.experiment == "EV"
        np.testing.assert_array_equal(artifact.coefficients, fixed_estimate.coefficients)
        assert artifact.log_likelihood is None

    def test_freeze_with_panel(self, mixed_spec, mixed_estimate, mixed_panel):
        """Freezing against a panel stores the simulated log-likelihood."""
        artifact = freeze_artifact(
            mixed_spec, mixed_estimate.coefficients, "EV", 0,
            panel=mixed_panel, n_draws=50, burn_in=15,
        )
        expected = simulated_log_likelihood(artifact, mixed_panel, n_draws=50, burn_in=15)
        assert artifact.log_likelihood == pytest.approx(expected)
        assert artifact.log_likelihood < 0
