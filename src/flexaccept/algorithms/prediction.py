"""Simulated acceptance probabilities and average partial effects.

Tech-Friendly Names (Primary):
    - predict_probabilities(): Add a predicted-probability column to a design
    - simulate_choice_probabilities(): Per-row probabilities as an array
    - compute_average_partial_effect(): APE of one design attribute
    - compute_average_partial_effects(): Several APEs sharing one set of draws

Probabilities integrate the logit kernel over the mixing distribution by
averaging it across S Halton draws of the random coefficients. The kernel is
evaluated in log space (see flexaccept._kernels), so probabilities are
always within [0, 1] and never NaN for extreme utilities.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from flexaccept._kernels import grouped_log_softmax_numba
from flexaccept.algorithms.draws import halton_normal_draws
from flexaccept.core.config import PartialEffectSpec
from flexaccept.core.model import ModelArtifact
from flexaccept.core.panel import ScenarioDesign


def probability_column(replicate_index: int) -> str:
    """Column name of the predictions of one artifact."""
    return "p_validated" if replicate_index == 0 else f"p_r{replicate_index:04d}"


def _coefficient_draws(
    artifact: ModelArtifact, n_draws: int, burn_in: int
) -> NDArray[np.float64]:
    spec = artifact.specification
    # Without random coefficients every draw is identical
    n = n_draws if spec.n_random else 1
    z = halton_normal_draws(n, spec.n_random, burn_in=burn_in)
    return artifact.draw_coefficients(z)


def _draw_probabilities(
    X: NDArray[np.float64],
    starts: NDArray[np.int64],
    betas: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Rows x S logit probabilities for every coefficient draw."""
    utilities = np.ascontiguousarray(X @ betas.T)
    return np.exp(grouped_log_softmax_numba(utilities, starts))


def simulate_choice_probabilities(
    artifact: ModelArtifact,
    design: ScenarioDesign,
    n_draws: int = 2000,
    burn_in: int = 15,
) -> NDArray[np.float64]:
    """
    Simulated probability of every design row.

    Args:
        artifact: Frozen model
        design: TIOLI scenario design
        n_draws: Halton draws S
        burn_in: Leading Halton points discarded

    Returns:
        Vector of probabilities, one per design row, within [0, 1]

    Raises:
        SpecificationMismatchError: If the design lacks a model attribute
    """
    X = design.attribute_matrix(artifact.specification.attributes)
    betas = _coefficient_draws(artifact, n_draws, burn_in)
    probs = _draw_probabilities(X, design.group_starts, betas).mean(axis=1)
    return np.clip(probs, 0.0, 1.0)


def predict_probabilities(
    artifact: ModelArtifact,
    design: ScenarioDesign,
    n_draws: int = 2000,
    burn_in: int = 15,
    column: str | None = None,
) -> ScenarioDesign:
    """
    Return a copy of the design with a predicted-probability column.

    Args:
        artifact: Frozen model (validated or replicate)
        design: TIOLI scenario design; existing columns are kept unchanged
        n_draws: Halton draws S
        burn_in: Leading Halton points discarded
        column: Name of the new column (default "p_validated" or "p_rXXXX")

    Returns:
        New ScenarioDesign with the added column

    Example:
        >>> design = predict_probabilities(artifact, design, n_draws=2000, burn_in=15)
        >>> design.data.loc[design.contract_mask, "p_validated"].describe()
    """
    probs = simulate_choice_probabilities(artifact, design, n_draws, burn_in)
    name = column or probability_column(artifact.replicate_index)
    return design.with_column(name, probs)


# =============================================================================
# AVERAGE PARTIAL EFFECTS
# =============================================================================


def compute_average_partial_effects(
    artifact: ModelArtifact,
    design: ScenarioDesign,
    effects: Sequence[PartialEffectSpec],
    n_draws: int = 2000,
    burn_in: int = 15,
) -> dict[str, float]:
    """
    Average partial effects on the contract acceptance probability.

    For an analytic effect (delta None) the marginal effect of attribute k
    on the contract row of scenario i is E_s[b_k,s P_is (1 - P_is)], the
    derivative of the simulated probability. A discrete effect is
    P_i(x_k + delta) - P_i(x_k). Both are averaged over all scenarios.

    Args:
        artifact: Frozen model
        design: TIOLI scenario design
        effects: Effects to compute
        n_draws: Halton draws S
        burn_in: Leading Halton points discarded

    Returns:
        Dictionary effect name -> APE
    """
    spec = artifact.specification
    X = design.attribute_matrix(spec.attributes)
    starts = design.group_starts
    contract = design.contract_mask
    betas = _coefficient_draws(artifact, n_draws, burn_in)
    base = _draw_probabilities(X, starts, betas)

    results: dict[str, float] = {}
    for effect in effects:
        k = spec.index_of(effect.attribute)
        if effect.delta is None:
            p = base[contract]
            marginal = betas[:, k][np.newaxis, :] * p * (1.0 - p)
            results[effect.name] = float(marginal.mean())
        else:
            shifted = X.copy()
            shifted[contract, k] += effect.delta
            moved = _draw_probabilities(shifted, starts, betas)
            change = moved[contract].mean(axis=1) - base[contract].mean(axis=1)
            results[effect.name] = float(change.mean())
    return results


def compute_average_partial_effect(
    artifact: ModelArtifact,
    design: ScenarioDesign,
    attribute: str,
    n_draws: int = 2000,
    burn_in: int = 15,
    delta: float | None = None,
) -> float:
    """APE of a single attribute; see compute_average_partial_effects."""
    effect = PartialEffectSpec(name=attribute, attribute=attribute, delta=delta)
    return compute_average_partial_effects(
        artifact, design, [effect], n_draws=n_draws, burn_in=burn_in
    )[attribute]
