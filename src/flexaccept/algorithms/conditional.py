"""Conditional (individual-level) coefficients and willingness-to-accept.

Tech-Friendly Names (Primary):
    - derive_conditional_parameters(): Posterior means per respondent
    - simulated_log_likelihood(): Panel log-likelihood at frozen coefficients
    - compute_wta(): Scalar WTA = -b_attr / b_cost with a denominator guard
    - compute_wta_table(): Respondent-level WTA with degenerate rows flagged

For respondent n with observed choice sequence y_n, the conditional mean of
the coefficients is

    E[b | y_n] = sum_s w_ns b_s,   w_ns = P(y_n | b_s) / sum_t P(y_n | b_t)

where b_s are S simulated draws from the mixing distribution of the
artifact. Respondent n uses block n of the Halton sequence, so results do
not depend on how respondents are partitioned or ordered.

References:
    Revelt, D., & Train, K. (2000). Customer-specific taste parameters and
    mixed logit. Working paper, UC Berkeley.
"""

from __future__ import annotations

import logging
import time
import warnings
from typing import Iterator, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from flexaccept._kernels import log_mean_exp_numba, sequence_log_likelihood_numba
from flexaccept.algorithms.draws import HaltonDrawSequence
from flexaccept.core.exceptions import DegenerateRatioError, NumericalInstabilityWarning
from flexaccept.core.model import ModelArtifact
from flexaccept.core.panel import RESPONDENT_COLUMN, ChoicePanel
from flexaccept.core.result import ConditionalResult, coefficient_column

logger = logging.getLogger(__name__)

# Effective draws below this mean one draw carries practically all weight
_COLLAPSED_ESS = 1.5

WTA_FLAG_COLUMN = "wta_flagged"


def wta_column(attribute: str) -> str:
    """Column name of the respondent-level WTA of an attribute."""
    return f"wta_{attribute}"


def _iter_respondent_loglik(
    artifact: ModelArtifact,
    panel: ChoicePanel,
    n_draws: int,
    burn_in: int,
) -> Iterator[tuple[int, NDArray[np.float64], NDArray[np.float64]]]:
    """Yield (position, S x K coefficient draws, S sequence log-likelihoods)."""
    spec = artifact.specification
    X = panel.attribute_matrix(spec.attributes)
    n = n_draws if spec.n_random else 1
    draws = HaltonDrawSequence(spec.n_random, n, burn_in)

    for pos in range(panel.n_respondents):
        r0, r1, g0, g1 = panel.respondent_slice(pos)
        betas = artifact.draw_coefficients(draws.block(pos))
        utilities = np.ascontiguousarray(X[r0:r1] @ betas.T)
        starts = panel.situation_starts[g0:g1 + 1] - r0
        chosen = panel.chosen_rows[g0:g1] - r0
        yield pos, betas, sequence_log_likelihood_numba(utilities, starts, chosen)


def simulated_log_likelihood(
    artifact: ModelArtifact,
    panel: ChoicePanel,
    n_draws: int = 2000,
    burn_in: int = 15,
) -> float:
    """
    Simulated log-likelihood of a choice panel at frozen coefficients.

    sum_n log( (1/S) sum_s P(y_n | b_s) ), evaluated in log space.

    Args:
        artifact: Frozen model
        panel: Observed choices
        n_draws: Halton draws per respondent S
        burn_in: Leading Halton points discarded

    Returns:
        Log-likelihood (<= 0)

    Raises:
        SpecificationMismatchError: If the panel lacks a model attribute
    """
    total = 0.0
    for _, _, loglik in _iter_respondent_loglik(artifact, panel, n_draws, burn_in):
        total += log_mean_exp_numba(loglik)
    return float(total)


def derive_conditional_parameters(
    artifact: ModelArtifact,
    panel: ChoicePanel,
    n_draws: int = 2000,
    burn_in: int = 15,
) -> ConditionalResult:
    """
    Likelihood-weighted posterior means of every coefficient per respondent.

    Args:
        artifact: Frozen model (validated or replicate)
        panel: Observed choices of the respondents
        n_draws: Halton draws per respondent S
        burn_in: Leading Halton points discarded

    Returns:
        ConditionalResult with N x K conditional means and variances

    Raises:
        SpecificationMismatchError: If the panel lacks a model attribute

    Example:
        >>> result = derive_conditional_parameters(artifact, panel, n_draws=2000)
        >>> result.to_dataframe().head()
        >>> result.moment_diagnostic()
    """
    start_time = time.perf_counter()
    spec = artifact.specification
    n_resp = panel.n_respondents
    k = spec.n_attributes

    means = np.empty((n_resp, k), dtype=np.float64)
    variances = np.empty((n_resp, k), dtype=np.float64)
    ess = np.empty(n_resp, dtype=np.float64)
    total_ll = 0.0

    for pos, betas, loglik in _iter_respondent_loglik(artifact, panel, n_draws, burn_in):
        total_ll += log_mean_exp_numba(loglik)
        weights = np.exp(loglik - loglik.max())
        weights /= weights.sum()
        mean = weights @ betas
        means[pos] = mean
        variances[pos] = weights @ (betas - mean) ** 2
        ess[pos] = 1.0 / float(np.sum(weights ** 2))

    if spec.n_random and n_draws > 1:
        collapsed = int(np.sum(ess < _COLLAPSED_ESS))
        if collapsed:
            warnings.warn(
                f"Likelihood weights of {collapsed} of {n_resp} respondents collapse "
                f"onto a single draw (replicate {artifact.replicate_index}); "
                f"consider more draws.",
                NumericalInstabilityWarning,
                stacklevel=2,
            )

    unconditional_var = np.zeros(k, dtype=np.float64)
    if spec.n_random:
        unconditional_var[spec.random_indices] = np.diag(artifact.random_covariance)

    elapsed = (time.perf_counter() - start_time) * 1000
    logger.debug(
        "Derived conditional parameters of replicate %d for %d respondents in %.1f ms",
        artifact.replicate_index, n_resp, elapsed,
    )
    return ConditionalResult(
        replicate_index=artifact.replicate_index,
        attributes=spec.attributes,
        random_attributes=spec.random,
        respondent_ids=panel.respondent_ids.copy(),
        conditional_means=means,
        conditional_variances=variances,
        effective_draws=ess,
        log_likelihood=float(total_ll),
        unconditional_means=artifact.means.copy(),
        unconditional_variances=unconditional_var,
        computation_time_ms=elapsed,
    )


# =============================================================================
# WILLINGNESS TO ACCEPT
# =============================================================================


def compute_wta(b_attribute: float, b_cost: float, epsilon: float = 1e-6) -> float:
    """
    Willingness to accept a change in an attribute: -b_attribute / b_cost.

    Args:
        b_attribute: Coefficient of the non-monetary attribute
        b_cost: Coefficient of the monetary attribute
        epsilon: Minimum |b_cost| for a usable ratio

    Returns:
        WTA in monetary units

    Raises:
        DegenerateRatioError: If |b_cost| < epsilon or either input is not finite

    Example:
        >>> compute_wta(-10.0, -2.0)
        -5.0
    """
    if not (np.isfinite(b_attribute) and np.isfinite(b_cost)):
        raise DegenerateRatioError(
            f"WTA inputs must be finite, got b_attribute={b_attribute}, b_cost={b_cost}"
        )
    if abs(b_cost) < epsilon:
        raise DegenerateRatioError(
            f"|cost coefficient| = {abs(b_cost):.3e} is below epsilon {epsilon:.1e}"
        )
    return float(-b_attribute / b_cost)


def compute_wta_table(
    conditional: ConditionalResult,
    attributes: Sequence[str],
    cost_attribute: str,
    epsilon: float = 1e-6,
) -> pd.DataFrame:
    """
    Respondent-level WTA from conditional coefficients.

    Respondents whose conditional cost coefficient is below epsilon in
    absolute value are flagged: their WTA values are NaN and wta_flagged
    is True, so they drop out of the auxiliary regressions.

    Args:
        conditional: Conditional coefficients of one artifact
        attributes: Attributes whose WTA is computed
        cost_attribute: Monetary attribute in the denominator
        epsilon: Minimum |b_cost| for a usable ratio

    Returns:
        DataFrame with respondent_id, one wta_<attribute> column per
        attribute and wta_flagged

    Raises:
        KeyError: If an attribute is not part of the model
    """
    table = conditional.to_dataframe()
    missing = [
        a for a in list(attributes) + [cost_attribute]
        if coefficient_column(a) not in table.columns
    ]
    if missing:
        raise KeyError(f"Attributes {missing} are not part of the model")

    b_cost = table[coefficient_column(cost_attribute)].to_numpy(dtype=np.float64)
    flagged = ~np.isfinite(b_cost) | (np.abs(b_cost) < epsilon)
    safe_cost = np.where(flagged, np.nan, b_cost)

    out = pd.DataFrame({RESPONDENT_COLUMN: table[RESPONDENT_COLUMN].to_numpy()})
    for attr in attributes:
        b_attr = table[coefficient_column(attr)].to_numpy(dtype=np.float64)
        out[wta_column(attr)] = -b_attr / safe_cost
    out[WTA_FLAG_COLUMN] = flagged

    n_flagged = int(flagged.sum())
    if n_flagged:
        warnings.warn(
            f"{n_flagged} respondents have |{cost_attribute} coefficient| < {epsilon:.1e} "
            f"in replicate {conditional.replicate_index}; their WTA is set to missing.",
            NumericalInstabilityWarning,
            stacklevel=2,
        )
    return out
