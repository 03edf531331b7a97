"""Krinsky-Robb aggregation of replicate statistics.

Tech-Friendly Names (Primary):
    - aggregate(): Mean, percentile CI and bootstrap p-value of one statistic
    - aggregate_statistics(): aggregate() for every statistic of a table
    - bootstrap_p_value(): Two-sided p-value against a null of zero

Percentiles use linear interpolation between order statistics (numpy's
default, Hyndman-Fan type 7). When fewer than one replicate is expected in
each tail, i.e. n * (1 - confidence) / 2 < 1, the interval is the sample
range [min, max] instead, the widest interval the replicates support.

Ties at zero count toward both sides of the p-value:

    p = 2 * min(#(v >= 0), #(v <= 0)) / n, clipped to [0, 1]

so a distribution that sits entirely at zero has p = 1 and one that lies
strictly on one side of zero has p = 0.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from flexaccept.core.exceptions import InsufficientReplicatesError
from flexaccept.core.result import AggregateResult
from flexaccept.core.types import VALIDATED_INDEX

STATISTIC_COLUMNS = ("replicate_index", "statistic_name", "value", "std_error")

AGGREGATE_COLUMNS = (
    "experiment",
    "statistic_name",
    "mean",
    "ci_lower",
    "ci_upper",
    "p_value",
    "std_dev",
    "n_usable_replicates",
    "n_intended_replicates",
    "n_excluded",
    "confidence",
    "ci_bounded_by_sample",
)


def bootstrap_p_value(values: NDArray[np.float64]) -> float:
    """Two-sided bootstrap p-value of finite replicate values against zero."""
    n = values.size
    if n == 0:
        raise InsufficientReplicatesError("No usable replicate values")
    at_or_above = int(np.sum(values >= 0.0))
    at_or_below = int(np.sum(values <= 0.0))
    return float(np.clip(2.0 * min(at_or_above, at_or_below) / n, 0.0, 1.0))


def aggregate(
    statistic_name: str,
    values: Sequence[float] | NDArray[np.float64],
    n_intended: int | None = None,
    confidence: float = 0.95,
    experiment: str | None = None,
) -> AggregateResult:
    """
    Summarize the replicate distribution of one statistic.

    Missing (NaN) and infinite values are excluded and counted.

    Args:
        statistic_name: Name of the statistic
        values: One value per replicate (NaN for unusable replicates)
        n_intended: Replicates the run was asked to produce (default: len(values))
        confidence: Confidence level of the percentile interval
        experiment: Optional experiment label

    Returns:
        AggregateResult

    Raises:
        InsufficientReplicatesError: If no value is usable
        ValueError: If confidence is not in (0, 1)

    Example:
        >>> result = aggregate("ape:x", [-2, -1, 0, 1, 2, 3, 4, 5, 6, 7])
        >>> result.mean, (result.ci_lower, result.ci_upper), result.p_value
        (2.5, (-2.0, 7.0), 0.6)
    """
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    arr = np.asarray(values, dtype=np.float64).ravel()
    usable = arr[np.isfinite(arr)]
    n = usable.size
    intended = arr.size if n_intended is None else int(n_intended)
    if n == 0:
        raise InsufficientReplicatesError(
            f"Statistic '{statistic_name}' has no usable replicates "
            f"(0 of {intended}); no confidence interval can be computed"
        )

    alpha = 1.0 - confidence
    bounded = n * alpha / 2.0 < 1.0
    if bounded:
        ci_lower, ci_upper = float(usable.min()), float(usable.max())
    else:
        ci_lower = float(np.percentile(usable, 100 * alpha / 2))
        ci_upper = float(np.percentile(usable, 100 * (1 - alpha / 2)))

    return AggregateResult(
        statistic_name=statistic_name,
        mean=float(usable.mean()),
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        p_value=bootstrap_p_value(usable),
        n_usable_replicates=n,
        n_intended_replicates=intended,
        std_dev=float(usable.std(ddof=1)) if n > 1 else 0.0,
        confidence=confidence,
        ci_bounded_by_sample=bounded,
        experiment=experiment,
    )


def aggregate_statistics(
    statistics: pd.DataFrame,
    n_intended: int,
    confidence: float = 0.95,
    experiment: str | None = None,
) -> pd.DataFrame:
    """
    Aggregate every statistic of a replication-statistic table.

    Rows of the validated artifact (replicate 0) are ignored. Replicates
    that failed have no rows and count as excluded.

    Args:
        statistics: Table with replicate_index, statistic_name and value
        n_intended: Replicates the run was asked to produce
        confidence: Confidence level of the percentile intervals
        experiment: Optional experiment label

    Returns:
        DataFrame with one row per statistic (columns AGGREGATE_COLUMNS),
        in order of first appearance

    Raises:
        InsufficientReplicatesError: If a statistic has no usable replicate
    """
    missing = [c for c in ("replicate_index", "statistic_name", "value")
               if c not in statistics.columns]
    if missing:
        raise ValueError(f"Statistics table is missing columns {missing}")

    replicates = statistics[statistics["replicate_index"] != VALIDATED_INDEX]
    rows = [
        aggregate(
            str(name),
            group["value"].to_numpy(dtype=np.float64),
            n_intended=n_intended,
            confidence=confidence,
            experiment=experiment,
        ).to_dict()
        for name, group in replicates.groupby("statistic_name", sort=False)
    ]
    return pd.DataFrame(rows, columns=list(AGGREGATE_COLUMNS))
