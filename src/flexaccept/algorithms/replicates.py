"""Krinsky-Robb replicate draws and zero-iteration model freezing.

Tech-Friendly Names (Primary):
    - draw_replicates(): Iterate over replicate ModelArtifacts b_r ~ N(b, V)
    - replicate_coefficients(): The raw R x k matrix of replicate draws
    - freeze_artifact(): Freeze any coefficient vector into a ModelArtifact
    - validated_artifact(): The artifact frozen at the point estimate

All R draws come from one random stream seeded once, so the full sequence is
reproducible bit for bit, and draw r does not depend on R (running with
R = 1000 reproduces the first 100 replicates of a run with R = 100).

References:
    Krinsky, I., & Robb, A. L. (1986). On approximating the statistical
    properties of elasticities. Review of Economics and Statistics, 68(4).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator

import numpy as np
from numpy.typing import NDArray

from flexaccept.core.exceptions import InvalidArgumentError, NumericalError
from flexaccept.core.model import ModelArtifact, ModelSpecification, PointEstimate
from flexaccept.core.types import VALIDATED_INDEX

if TYPE_CHECKING:
    from flexaccept.core.panel import ChoicePanel


# =============================================================================
# COVARIANCE FACTOR
# =============================================================================


def covariance_factor(
    covariance: NDArray[np.float64],
    tolerance: float = 1e-10,
) -> NDArray[np.float64]:
    """
    Factor a covariance matrix V = A A^T for multivariate-normal sampling.

    Uses the Cholesky factor when V is positive definite. A singular but
    positive semi-definite V (e.g. a parameter constrained to zero) falls
    back to the symmetric eigen-decomposition.

    Args:
        covariance: k x k covariance matrix
        tolerance: Relative tolerance for asymmetry and negative eigenvalues

    Returns:
        k x k factor A

    Raises:
        NumericalError: If V is asymmetric or has a materially negative
            eigenvalue (the estimator did not reach a point with a
            positive-definite Hessian)
    """
    V = np.asarray(covariance, dtype=np.float64)
    scale = max(float(np.max(np.abs(V))), 1.0) if V.size else 1.0
    if not np.allclose(V, V.T, rtol=0.0, atol=tolerance * scale):
        raise NumericalError("Covariance matrix is not symmetric")

    try:
        return np.linalg.cholesky(V)
    except np.linalg.LinAlgError:
        pass

    eigvals, eigvecs = np.linalg.eigh((V + V.T) / 2.0)
    min_eig = float(eigvals.min())
    if min_eig < -tolerance * scale:
        raise NumericalError(
            f"Covariance matrix is not positive semi-definite "
            f"(smallest eigenvalue {min_eig:.3e}); Cholesky factorization failed"
        )
    return eigvecs * np.sqrt(np.clip(eigvals, 0.0, None))


# =============================================================================
# REPLICATE DRAWS
# =============================================================================


def _iter_coefficients(
    mean: NDArray[np.float64],
    factor: NDArray[np.float64],
    n_replicates: int,
    seed: int | np.random.SeedSequence | None,
) -> Iterator[NDArray[np.float64]]:
    rng = np.random.default_rng(seed)
    k = mean.size
    for _ in range(n_replicates):
        z = rng.standard_normal(k)
        yield mean + factor @ z


def replicate_coefficients(
    point_estimate: PointEstimate,
    n_replicates: int,
    seed: int | np.random.SeedSequence | None = None,
) -> NDArray[np.float64]:
    """
    Draw R coefficient vectors from N(b, V).

    Args:
        point_estimate: Mean vector b and covariance V
        n_replicates: Number of replicates R
        seed: Seed of the random stream

    Returns:
        R x k matrix; row r - 1 is replicate r

    Raises:
        InvalidArgumentError: If n_replicates <= 0
        NumericalError: If V cannot be factored
    """
    if n_replicates <= 0:
        raise InvalidArgumentError(f"n_replicates must be positive, got {n_replicates}")
    factor = covariance_factor(point_estimate.covariance)
    draws = _iter_coefficients(point_estimate.coefficients, factor, n_replicates, seed)
    return np.vstack(list(draws))


def draw_replicates(
    point_estimate: PointEstimate,
    n_replicates: int,
    seed: int | np.random.SeedSequence | None,
    specification: ModelSpecification,
    experiment: str | None = None,
) -> Iterator[ModelArtifact]:
    """
    Iterate over Krinsky-Robb replicate artifacts.

    Validation happens eagerly, before the first artifact is requested.

    Args:
        point_estimate: Mean vector b and covariance V
        n_replicates: Number of replicates R
        seed: Seed of the single random stream
        specification: Utility specification the coefficients belong to
        experiment: Experiment label (defaults to the point estimate's)

    Returns:
        Iterator yielding ModelArtifacts with replicate_index 1..R

    Raises:
        InvalidArgumentError: If n_replicates <= 0
        NumericalError: If V is not symmetric positive semi-definite
        SpecificationMismatchError: If b does not fit the specification

    Example:
        >>> for artifact in draw_replicates(estimate, 1000, seed=42, specification=spec):
        ...     store.save("EV", artifact.replicate_index, artifact)
    """
    if n_replicates <= 0:
        raise InvalidArgumentError(f"n_replicates must be positive, got {n_replicates}")
    point_estimate.check_against(specification)
    factor = covariance_factor(point_estimate.covariance)
    label = experiment or point_estimate.experiment or ""

    def _generate() -> Iterator[ModelArtifact]:
        draws = _iter_coefficients(
            point_estimate.coefficients, factor, n_replicates, seed
        )
        for r, coefficients in enumerate(draws, start=1):
            yield ModelArtifact(
                specification=specification,
                coefficients=coefficients,
                experiment=label,
                replicate_index=r,
            )

    return _generate()


# =============================================================================
# ZERO-ITERATION FREEZE
# =============================================================================


def freeze_artifact(
    specification: ModelSpecification,
    coefficients: NDArray[np.float64],
    experiment: str,
    replicate_index: int,
    panel: "ChoicePanel | None" = None,
    n_draws: int = 2000,
    burn_in: int = 15,
) -> ModelArtifact:
    """
    Freeze a coefficient vector into a reusable model artifact.

    No optimization takes place. When a choice panel is given, the simulated
    log-likelihood is evaluated at the frozen coefficients and stored with
    the artifact.

    Args:
        specification: Utility specification
        coefficients: Coefficient vector to freeze
        experiment: Experiment label
        replicate_index: 0 for the validated artifact, 1..R for replicates
        panel: Optional observed choices for the log-likelihood
        n_draws: Halton draws per respondent for the log-likelihood
        burn_in: Leading Halton points discarded

    Returns:
        ModelArtifact
    """
    artifact = ModelArtifact(
        specification=specification,
        coefficients=coefficients,
        experiment=experiment,
        replicate_index=replicate_index,
    )
    if panel is None:
        return artifact

    from flexaccept.algorithms.conditional import simulated_log_likelihood

    loglik = simulated_log_likelihood(artifact, panel, n_draws=n_draws, burn_in=burn_in)
    return ModelArtifact(
        specification=specification,
        coefficients=artifact.coefficients,
        experiment=experiment,
        replicate_index=replicate_index,
        log_likelihood=loglik,
    )


def validated_artifact(
    point_estimate: PointEstimate,
    specification: ModelSpecification,
    experiment: str | None = None,
    panel: "ChoicePanel | None" = None,
    n_draws: int = 2000,
    burn_in: int = 15,
) -> ModelArtifact:
    """Freeze the point estimate itself as replicate 0."""
    point_estimate.check_against(specification)
    return freeze_artifact(
        specification,
        point_estimate.coefficients,
        experiment or point_estimate.experiment or "",
        VALIDATED_INDEX,
        panel=panel,
        n_draws=n_draws,
        burn_in=burn_in,
    )
