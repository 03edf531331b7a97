"""Quasi-random standard-normal draws for simulated integration.

The mixing distribution of a mixed-logit model has no closed form, so
probabilities and conditional means are integrated numerically over draws
of the random coefficients. Draws come from an unscrambled Halton sequence
(one prime base per random coefficient) mapped through the inverse normal
CDF.

The first `burn_in` points of the sequence are discarded. This is a
deterministic offset into the low-discrepancy sequence that removes the
strongly correlated leading points (the very first Halton point is the
origin), not a Markov-chain burn-in: no convergence diagnostics apply.

Respondent-specific draws use consecutive blocks of one sequence: block n
holds points burn_in + n * S ... burn_in + (n + 1) * S - 1.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.stats import norm, qmc

# Keep the inverse CDF finite at the unit-interval boundary
_UNIT_EPS = 1e-12


def _check_draw_args(n_draws: int, burn_in: int) -> None:
    if n_draws < 1:
        raise ValueError(f"n_draws must be >= 1, got {n_draws}")
    if burn_in < 0:
        raise ValueError(f"burn_in must be >= 0, got {burn_in}")


def halton_normal_draws(
    n_draws: int,
    dimension: int,
    burn_in: int = 15,
    offset: int = 0,
) -> NDArray[np.float64]:
    """
    Standard-normal draws from an unscrambled Halton sequence.

    Args:
        n_draws: Number of draws S
        dimension: Number of random coefficients (may be 0)
        burn_in: Leading sequence points to discard
        offset: Additional points to skip after the burn-in (used to take
            consecutive blocks of the same sequence)

    Returns:
        S x dimension matrix of standard-normal draws

    Example:
        >>> z = halton_normal_draws(2000, 3, burn_in=15)
        >>> z.shape
        (2000, 3)
    """
    _check_draw_args(n_draws, burn_in)
    if dimension < 0:
        raise ValueError(f"dimension must be >= 0, got {dimension}")
    if dimension == 0:
        return np.empty((n_draws, 0), dtype=np.float64)

    sampler = qmc.Halton(d=dimension, scramble=False)
    skip = burn_in + offset
    if skip:
        sampler.fast_forward(skip)
    u = sampler.random(n_draws)
    u = np.clip(u, _UNIT_EPS, 1.0 - _UNIT_EPS)
    return norm.ppf(u)


class HaltonDrawSequence:
    """
    Block-addressable Halton draws, one block of S points per respondent.

    Blocks are generated on demand, so any subset of respondents can be
    processed independently and in any order with identical results.

    Attributes:
        dimension: Number of random coefficients
        n_draws: Points per block S
        burn_in: Leading points discarded before block 0
    """

    def __init__(self, dimension: int, n_draws: int, burn_in: int = 15) -> None:
        _check_draw_args(n_draws, burn_in)
        self.dimension = int(dimension)
        self.n_draws = int(n_draws)
        self.burn_in = int(burn_in)

    def block(self, index: int) -> NDArray[np.float64]:
        """Draws of block `index` (S x dimension)."""
        if index < 0:
            raise ValueError(f"block index must be >= 0, got {index}")
        return halton_normal_draws(
            self.n_draws,
            self.dimension,
            burn_in=self.burn_in,
            offset=index * self.n_draws,
        )

    def __repr__(self) -> str:
        return (
            f"HaltonDrawSequence(dimension={self.dimension}, "
            f"n_draws={self.n_draws}, burn_in={self.burn_in})"
        )
