"""Result dataclasses for the Krinsky-Robb replication pipeline.

Tech-Friendly Names (Primary):
    - ConditionalResult: Per-respondent conditional coefficients of one artifact
    - RegressionResult: Auxiliary OLS regression of a WTA on covariates
    - AggregateResult: Mean, percentile CI and bootstrap p-value of a statistic
    - ReplicateFailure: A replicate dropped because of a recoverable error
    - ReplicationRunResult: Everything one pipeline run produced
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from flexaccept.core.mixins import ResultSummaryMixin
from flexaccept.core.panel import RESPONDENT_COLUMN

if TYPE_CHECKING:
    from flexaccept.core.panel import ScenarioDesign


def coefficient_column(attribute: str) -> str:
    """Column name of the conditional coefficient of an attribute."""
    return f"b_{attribute}"


def _safe_ratio(numerator: float, denominator: float) -> float:
    if denominator == 0.0 or not np.isfinite(denominator):
        return float("nan")
    return float(numerator / denominator)


# =============================================================================
# CONDITIONAL PARAMETERS
# =============================================================================


@dataclass(frozen=True, eq=False)
class ConditionalResult:
    """
    Respondent-level conditional (posterior) coefficients of one artifact.

    Each respondent's conditional mean is the likelihood-weighted average of
    the simulated coefficient draws, with weights proportional to the
    probability of the respondent's observed choice sequence.

    Attributes:
        replicate_index: Artifact the coefficients were derived from
        attributes: All model attributes, in specification order
        random_attributes: Attributes with a mixing distribution
        respondent_ids: Respondent identifiers (N)
        conditional_means: N x K conditional means (fixed attributes carry
            the population coefficient)
        conditional_variances: N x K conditional variances (zero for fixed
            attributes)
        effective_draws: N effective sample sizes of the likelihood weights
            (1 / sum of squared weights)
        log_likelihood: Simulated log-likelihood of the panel
        unconditional_means: K population means of the coefficients
        unconditional_variances: K population variances of the coefficients
        computation_time_ms: Time taken in milliseconds
    """

    replicate_index: int
    attributes: tuple[str, ...]
    random_attributes: tuple[str, ...]
    respondent_ids: NDArray[Any]
    conditional_means: NDArray[np.float64]
    conditional_variances: NDArray[np.float64]
    effective_draws: NDArray[np.float64]
    log_likelihood: float
    unconditional_means: NDArray[np.float64]
    unconditional_variances: NDArray[np.float64]
    computation_time_ms: float = 0.0

    @property
    def n_respondents(self) -> int:
        """Number of respondents."""
        return len(self.respondent_ids)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per respondent with a b_<attribute> column per attribute."""
        frame = pd.DataFrame(
            self.conditional_means,
            columns=[coefficient_column(a) for a in self.attributes],
        )
        frame.insert(0, RESPONDENT_COLUMN, self.respondent_ids)
        return frame

    def moment_diagnostic(self) -> pd.DataFrame:
        """
        Compare conditional moments with the population distribution.

        For every random attribute the mean of the conditional means should
        reproduce the population mean, and the variance of the conditional
        means plus the mean conditional variance should reproduce the
        population variance. Ratios far from 1 indicate that the conditional
        estimates are a poor proxy for individual tastes.

        Returns:
            DataFrame indexed by random attribute with columns
            unconditional_mean, conditional_mean, mean_ratio,
            unconditional_variance, conditional_variance, variance_ratio
        """
        rows = []
        for attr in self.random_attributes:
            k = self.attributes.index(attr)
            means = self.conditional_means[:, k]
            cond_mean = float(means.mean())
            cond_var = float(means.var() + self.conditional_variances[:, k].mean())
            uncond_mean = float(self.unconditional_means[k])
            uncond_var = float(self.unconditional_variances[k])
            rows.append(
                {
                    "attribute": attr,
                    "unconditional_mean": uncond_mean,
                    "conditional_mean": cond_mean,
                    "mean_ratio": _safe_ratio(cond_mean, uncond_mean),
                    "unconditional_variance": uncond_var,
                    "conditional_variance": cond_var,
                    "variance_ratio": _safe_ratio(cond_var, uncond_var),
                }
            )
        columns = [
            "attribute",
            "unconditional_mean",
            "conditional_mean",
            "mean_ratio",
            "unconditional_variance",
            "conditional_variance",
            "variance_ratio",
        ]
        return pd.DataFrame(rows, columns=columns).set_index("attribute")

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("CONDITIONAL PARAMETERS REPORT")]

        lines.append(f"\nReplicate: {self.replicate_index}")
        lines.append(m._format_metric("Respondents", self.n_respondents))
        lines.append(m._format_metric("Simulated Log-Likelihood", self.log_likelihood))
        if self.n_respondents:
            lines.append(
                m._format_metric("Min Effective Draws", float(self.effective_draws.min()))
            )

        if self.random_attributes:
            lines.append(m._format_section("Moment Diagnostic"))
            diag = self.moment_diagnostic()
            for attr, row in diag.iterrows():
                lines.append(
                    f"  {attr}: mean ratio {row['mean_ratio']:.3f}, "
                    f"variance ratio {row['variance_ratio']:.3f}"
                )

        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "replicate_index": self.replicate_index,
            "attributes": list(self.attributes),
            "random_attributes": list(self.random_attributes),
            "respondent_ids": np.asarray(self.respondent_ids).tolist(),
            "conditional_means": self.conditional_means.tolist(),
            "conditional_variances": self.conditional_variances.tolist(),
            "effective_draws": self.effective_draws.tolist(),
            "log_likelihood": self.log_likelihood,
            "unconditional_means": self.unconditional_means.tolist(),
            "unconditional_variances": self.unconditional_variances.tolist(),
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        """Compact string representation."""
        return (
            f"ConditionalResult(replicate={self.replicate_index}, "
            f"respondents={self.n_respondents}, ll={self.log_likelihood:.2f})"
        )


# =============================================================================
# AUXILIARY REGRESSION
# =============================================================================


@dataclass(frozen=True, eq=False)
class RegressionResult:
    """
    OLS regression of a respondent-level WTA on covariates.

    Attributes:
        label: Covariate specification label
        outcome: Name of the dependent variable
        terms: Regressor names, starting with "const"
        coefficients: OLS estimates, one per term
        std_errors: HC1 heteroskedasticity-robust standard errors
        n_obs: Respondents used
        n_dropped: Respondents dropped because the outcome was flagged
        r_squared: Coefficient of determination
        computation_time_ms: Time taken in milliseconds
    """

    label: str
    outcome: str
    terms: tuple[str, ...]
    coefficients: NDArray[np.float64]
    std_errors: NDArray[np.float64]
    n_obs: int
    n_dropped: int
    r_squared: float
    computation_time_ms: float = 0.0

    @property
    def t_statistics(self) -> NDArray[np.float64]:
        """Coefficient divided by its robust standard error."""
        with np.errstate(divide="ignore", invalid="ignore"):
            return self.coefficients / self.std_errors

    def coefficient(self, term: str) -> float:
        """Estimate of one term."""
        return float(self.coefficients[self.terms.index(term)])

    def to_dataframe(self) -> pd.DataFrame:
        """One row per term: coefficient, std_error, t_stat."""
        return pd.DataFrame(
            {
                "term": list(self.terms),
                "coefficient": self.coefficients,
                "std_error": self.std_errors,
                "t_stat": self.t_statistics,
            }
        )

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header(f"WTA REGRESSION: {self.label.upper()}")]
        lines.append(f"\nOutcome: {self.outcome}")
        lines.append(m._format_metric("Observations", self.n_obs))
        lines.append(m._format_metric("Dropped (flagged WTA)", self.n_dropped))
        lines.append(m._format_metric("R-squared", self.r_squared))

        lines.append(m._format_section("Coefficients (HC1 std. errors)"))
        for term, b, se in zip(self.terms, self.coefficients, self.std_errors):
            lines.append(f"  {term:<30} {b:>12.4f} ({se:.4f})")

        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "label": self.label,
            "outcome": self.outcome,
            "terms": list(self.terms),
            "coefficients": self.coefficients.tolist(),
            "std_errors": self.std_errors.tolist(),
            "n_obs": self.n_obs,
            "n_dropped": self.n_dropped,
            "r_squared": self.r_squared,
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        """Compact string representation."""
        return (
            f"RegressionResult({self.label}, {self.outcome}, "
            f"n={self.n_obs}, r2={self.r_squared:.3f})"
        )


# =============================================================================
# AGGREGATION
# =============================================================================


@dataclass(frozen=True)
class AggregateResult:
    """
    Krinsky-Robb summary of one statistic across replicates.

    Attributes:
        statistic_name: Name of the statistic
        mean: Arithmetic mean of the usable replicate values
        ci_lower: Lower percentile bound of the confidence interval
        ci_upper: Upper percentile bound of the confidence interval
        p_value: Two-sided bootstrap p-value against zero
        n_usable_replicates: Replicates with a finite value
        n_intended_replicates: Replicates the run was asked to produce
        std_dev: Sample standard deviation of the replicate values
        confidence: Confidence level of the interval
        ci_bounded_by_sample: True if too few replicates fall in a tail and
            the interval is the sample minimum and maximum
        experiment: Optional experiment label
    """

    statistic_name: str
    mean: float
    ci_lower: float
    ci_upper: float
    p_value: float
    n_usable_replicates: int
    n_intended_replicates: int
    std_dev: float
    confidence: float = 0.95
    ci_bounded_by_sample: bool = False
    experiment: str | None = None

    @property
    def n_excluded(self) -> int:
        """Intended replicates that did not contribute."""
        return self.n_intended_replicates - self.n_usable_replicates

    @property
    def is_significant(self) -> bool:
        """True if the interval excludes zero."""
        return self.ci_lower > 0.0 or self.ci_upper < 0.0

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header("KRINSKY-ROBB AGGREGATE")]
        lines.append(f"\nStatistic: {self.statistic_name}")
        if self.experiment:
            lines.append(f"Experiment: {self.experiment}")
        lines.append(
            f"Replicates: {self.n_usable_replicates} of {self.n_intended_replicates} usable"
        )

        lines.append(m._format_section("Distribution"))
        lines.append(m._format_metric("Mean", self.mean))
        lines.append(m._format_metric("Std. Dev.", self.std_dev))
        pct = f"{self.confidence:.0%}"
        lines.append(m._format_metric(f"{pct} CI Lower", self.ci_lower))
        lines.append(m._format_metric(f"{pct} CI Upper", self.ci_upper))
        stars = m._format_significance(self.p_value)
        lines.append(m._format_metric("p-value", f"{self.p_value:.4f}{stars}"))
        if self.ci_bounded_by_sample:
            lines.append("  Interval is the sample range (too few replicates per tail).")

        lines.append("=" * 80)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "experiment": self.experiment,
            "statistic_name": self.statistic_name,
            "mean": self.mean,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "p_value": self.p_value,
            "std_dev": self.std_dev,
            "n_usable_replicates": self.n_usable_replicates,
            "n_intended_replicates": self.n_intended_replicates,
            "n_excluded": self.n_excluded,
            "confidence": self.confidence,
            "ci_bounded_by_sample": self.ci_bounded_by_sample,
        }

    def __repr__(self) -> str:
        """Compact string representation."""
        return (
            f"AggregateResult({self.statistic_name}, mean={self.mean:.4f}, "
            f"ci=[{self.ci_lower:.4f}, {self.ci_upper:.4f}], p={self.p_value:.3f}, "
            f"n={self.n_usable_replicates}/{self.n_intended_replicates})"
        )


# =============================================================================
# PIPELINE RUN
# =============================================================================


@dataclass(frozen=True)
class ReplicateFailure:
    """
    A replicate whose contribution was dropped.

    Attributes:
        replicate_index: Index of the failed replicate
        error_type: Exception class name
        message: Exception message
    """

    replicate_index: int
    error_type: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "replicate_index": self.replicate_index,
            "error_type": self.error_type,
            "message": self.message,
        }

    @classmethod
    def from_exception(cls, replicate_index: int, exc: BaseException) -> "ReplicateFailure":
        """Record an exception raised while processing a replicate."""
        return cls(replicate_index, type(exc).__name__, str(exc))


@dataclass(frozen=True, eq=False)
class ReplicationRunResult:
    """
    Output of one Krinsky-Robb run for one experiment.

    Attributes:
        experiment: "EV" or "HP"
        n_intended: Replicates the run was asked to produce
        n_completed: Replicates that produced statistics
        aggregates: One row per statistic (see AggregateResult.to_dict)
        failures: Replicates dropped because of recoverable errors
        predictions: Scenario design with the validated prediction column
        computation_time_ms: Time taken in milliseconds
    """

    experiment: str
    n_intended: int
    n_completed: int
    aggregates: pd.DataFrame
    failures: tuple[ReplicateFailure, ...] = ()
    predictions: "ScenarioDesign | None" = None
    computation_time_ms: float = 0.0
    validated_statistics: dict[str, float] = field(default_factory=dict)

    @property
    def n_failed(self) -> int:
        """Number of dropped replicates."""
        return len(self.failures)

    def aggregate(self, statistic_name: str) -> AggregateResult:
        """Look up the aggregate of one statistic."""
        rows = self.aggregates[self.aggregates["statistic_name"] == statistic_name]
        if rows.empty:
            raise KeyError(f"No aggregate for statistic '{statistic_name}'")
        row = rows.iloc[0]
        return AggregateResult(
            statistic_name=statistic_name,
            mean=float(row["mean"]),
            ci_lower=float(row["ci_lower"]),
            ci_upper=float(row["ci_upper"]),
            p_value=float(row["p_value"]),
            n_usable_replicates=int(row["n_usable_replicates"]),
            n_intended_replicates=int(row["n_intended_replicates"]),
            std_dev=float(row["std_dev"]),
            confidence=float(row["confidence"]),
            ci_bounded_by_sample=bool(row["ci_bounded_by_sample"]),
            experiment=self.experiment,
        )

    def summary(self) -> str:
        """Return human-readable summary report."""
        m = ResultSummaryMixin
        lines = [m._format_header(f"KRINSKY-ROBB REPLICATION: {self.experiment}")]

        status = m._format_status(self.n_failed == 0, "COMPLETE", "PARTIAL")
        lines.append(f"\nStatus: {status}")
        lines.append(
            f"Replicates contributing: {self.n_completed} of {self.n_intended} intended"
        )
        lines.append(m._format_metric("Failed Replicates", self.n_failed))
        lines.append(m._format_metric("Statistics", len(self.aggregates)))

        if len(self.aggregates):
            lines.append(m._format_section("Aggregates"))
            for _, row in self.aggregates.iterrows():
                stars = m._format_significance(float(row["p_value"]))
                lines.append(
                    f"  {row['statistic_name']:<44} {row['mean']:>10.4f} "
                    f"[{row['ci_lower']:.4f}, {row['ci_upper']:.4f}]{stars} "
                    f"n={int(row['n_usable_replicates'])}/{int(row['n_intended_replicates'])}"
                )

        if self.failures:
            lines.append(m._format_section("Failures"))
            lines.append(
                m._format_list(
                    [f"replicate {f.replicate_index}: {f.error_type}: {f.message}"
                     for f in self.failures],
                    item_name="failure",
                )
            )

        lines.append(m._format_footer(self.computation_time_ms))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Return dictionary representation for serialization."""
        return {
            "experiment": self.experiment,
            "n_intended": self.n_intended,
            "n_completed": self.n_completed,
            "n_failed": self.n_failed,
            "aggregates": self.aggregates.to_dict(orient="records"),
            "failures": [f.to_dict() for f in self.failures],
            "validated_statistics": dict(self.validated_statistics),
            "computation_time_ms": self.computation_time_ms,
        }

    def __repr__(self) -> str:
        """Compact string representation."""
        return (
            f"ReplicationRunResult({self.experiment}, "
            f"completed={self.n_completed}/{self.n_intended}, failed={self.n_failed})"
        )
