"""Numba JIT-compiled kernels for flexaccept.

This module contains the grouped-logit inner loops shared by probability
prediction, conditional-parameter derivation and simulated likelihood
evaluation. All functions use `@njit(cache=True)` to cache compiled code to
disk, avoiding recompilation overhead in every worker process. Kernels are
single-threaded; parallelism comes from the replicate worker pool.

Rows of the utility matrix are alternatives, columns are simulation draws.
Alternatives of one choice situation occupy the contiguous rows
starts[g]:starts[g + 1]. All computations stay in log space: the logit
kernel is evaluated as u - logsumexp(u) with the group maximum subtracted,
so large negative utilities underflow to probability 0 instead of
producing NaN.
"""

from __future__ import annotations

import numpy as np
from numba import njit


# =============================================================================
# GROUPED LOGIT
# =============================================================================


@njit(cache=True)
def grouped_log_softmax_numba(
    utilities: np.ndarray,
    starts: np.ndarray,
) -> np.ndarray:
    """
    Log choice probabilities of a logit kernel within each group.

    Args:
        utilities: rows x S matrix of systematic utilities
        starts: G + 1 row offsets of the groups (last entry = rows)

    Returns:
        rows x S matrix of log probabilities
    """
    n_rows, n_draws = utilities.shape
    n_groups = starts.shape[0] - 1
    out = np.empty((n_rows, n_draws), dtype=np.float64)

    for g in range(n_groups):
        lo = starts[g]
        hi = starts[g + 1]
        for s in range(n_draws):
            m = utilities[lo, s]
            for i in range(lo + 1, hi):
                if utilities[i, s] > m:
                    m = utilities[i, s]
            acc = 0.0
            for i in range(lo, hi):
                acc += np.exp(utilities[i, s] - m)
            lse = m + np.log(acc)
            for i in range(lo, hi):
                out[i, s] = utilities[i, s] - lse

    return out


@njit(cache=True)
def sequence_log_likelihood_numba(
    utilities: np.ndarray,
    starts: np.ndarray,
    chosen: np.ndarray,
) -> np.ndarray:
    """
    Log-likelihood of an observed choice sequence under each draw.

    Sums, over the groups, the log logit probability of the chosen row.

    Args:
        utilities: rows x S matrix of systematic utilities
        starts: G + 1 row offsets of the choice situations
        chosen: G row indices (relative to `utilities`) of the chosen rows

    Returns:
        Length-S vector of sequence log-likelihoods
    """
    n_draws = utilities.shape[1]
    n_groups = starts.shape[0] - 1
    loglik = np.zeros(n_draws, dtype=np.float64)

    for s in range(n_draws):
        total = 0.0
        for g in range(n_groups):
            lo = starts[g]
            hi = starts[g + 1]
            m = utilities[lo, s]
            for i in range(lo + 1, hi):
                if utilities[i, s] > m:
                    m = utilities[i, s]
            acc = 0.0
            for i in range(lo, hi):
                acc += np.exp(utilities[i, s] - m)
            total += utilities[chosen[g], s] - m - np.log(acc)
        loglik[s] = total

    return loglik


@njit(cache=True)
def log_mean_exp_numba(values: np.ndarray) -> float:
    """Numerically stable log(mean(exp(values)))."""
    n = values.shape[0]
    m = values[0]
    for i in range(1, n):
        if values[i] > m:
            m = values[i]
    acc = 0.0
    for i in range(n):
        acc += np.exp(values[i] - m)
    return m + np.log(acc / n)
