"""Auxiliary WTA regressions on respondent covariates.

Tech-Friendly Names (Primary):
    - resolve_covariates(): Validate a covariate specification once and build
      its design matrix
    - fit_ols(): OLS with HC1 heteroskedasticity-robust standard errors
    - regress_wta(): Regress one respondent-level WTA on resolved covariates

The covariate specification is an ordered list of (name, kind) terms. It is
resolved against the covariate table a single time, at startup: categorical
levels are fixed there (first sorted level is the reference) and the same
design matrix is reused for every replicate. Only the outcome changes
between replicates.
"""

from __future__ import annotations

import time
import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
import statsmodels.api as sm
from numpy.typing import NDArray

from flexaccept.core.config import RegressionModel
from flexaccept.core.exceptions import (
    DataQualityWarning,
    DataValidationError,
    NaNInfError,
    RegressionError,
    SpecificationMismatchError,
)
from flexaccept.core.panel import RESPONDENT_COLUMN
from flexaccept.core.result import RegressionResult

INTERCEPT = "const"


@dataclass(frozen=True, eq=False)
class ResolvedCovariates:
    """
    A covariate specification bound to a covariate table.

    Attributes:
        label: Label of the regression model
        terms: Design-matrix column names, starting with "const"
        design: DataFrame indexed by respondent_id with one column per term
        categorical_levels: Levels of each categorical covariate (reference first)
    """

    label: str
    terms: tuple[str, ...]
    design: pd.DataFrame
    categorical_levels: dict[str, tuple]

    @property
    def n_respondents(self) -> int:
        """Respondents with covariates."""
        return len(self.design)

    def __repr__(self) -> str:
        return (
            f"ResolvedCovariates({self.label}, terms={len(self.terms)}, "
            f"respondents={self.n_respondents})"
        )


def resolve_covariates(model: RegressionModel, covariates: pd.DataFrame) -> ResolvedCovariates:
    """
    Validate a covariate specification against the covariate table.

    Continuous terms enter as is, binary terms must be coded 0/1, and
    categorical terms expand to one indicator per non-reference level.

    Args:
        model: Labelled covariate specification
        covariates: One row per respondent with a respondent_id column

    Returns:
        ResolvedCovariates with the fixed design matrix

    Raises:
        SpecificationMismatchError: If a covariate column is missing
        DataValidationError: If respondent ids repeat, a binary covariate is
            not 0/1, a categorical covariate has a single level, or the full
            design matrix is rank-deficient
        NaNInfError: If a covariate has missing values
    """
    names = [t.name for t in model.terms]
    missing = [c for c in [RESPONDENT_COLUMN] + names if c not in covariates.columns]
    if missing:
        raise SpecificationMismatchError(
            f"Covariate table is missing columns {missing} required by model '{model.label}'"
        )
    if covariates[RESPONDENT_COLUMN].duplicated().any():
        raise DataValidationError("Covariate table has duplicate respondent ids")

    table = covariates.set_index(RESPONDENT_COLUMN)
    columns: dict[str, NDArray] = {INTERCEPT: np.ones(len(table))}
    levels: dict[str, tuple] = {}

    for term in model.terms:
        series = table[term.name]
        if series.isna().any():
            raise NaNInfError(
                f"Covariate '{term.name}' has {int(series.isna().sum())} missing values"
            )
        if term.kind == "categorical":
            term_levels = tuple(sorted(series.unique()))
            if len(term_levels) < 2:
                raise DataValidationError(
                    f"Categorical covariate '{term.name}' has a single level {term_levels}"
                )
            levels[term.name] = term_levels
            for level in term_levels[1:]:
                columns[f"{term.name}[{level}]"] = (series == level).to_numpy(dtype=np.float64)
            continue

        values = pd.to_numeric(series, errors="coerce").to_numpy(dtype=np.float64)
        if not np.all(np.isfinite(values)):
            raise NaNInfError(f"Covariate '{term.name}' has non-numeric or infinite values")
        if term.kind == "binary" and not np.all(np.isin(values, (0.0, 1.0))):
            raise DataValidationError(f"Binary covariate '{term.name}' must be coded 0/1")
        columns[term.name] = values

    design = pd.DataFrame(columns, index=table.index)
    rank = int(np.linalg.matrix_rank(design.to_numpy()))
    if rank < design.shape[1]:
        raise DataValidationError(
            f"Covariates of model '{model.label}' are collinear "
            f"(rank={rank}, columns={design.shape[1]})"
        )
    return ResolvedCovariates(
        label=model.label,
        terms=tuple(design.columns),
        design=design,
        categorical_levels=levels,
    )


# =============================================================================
# OLS
# =============================================================================


def fit_ols(
    y: NDArray[np.float64],
    X: NDArray[np.float64],
    terms: tuple[str, ...],
    label: str = "",
    outcome: str = "y",
    n_dropped: int = 0,
) -> RegressionResult:
    """
    Ordinary least squares with HC1 robust standard errors (statsmodels).

    Var(b) = n / (n - p) (X'X)^-1 X' diag(u^2) X (X'X)^-1

    Args:
        y: Outcome vector (n)
        X: Design matrix (n x p) including the intercept column
        terms: Column names of X
        label: Model label
        outcome: Outcome name
        n_dropped: Observations removed before the fit (reported only)

    Returns:
        RegressionResult

    Raises:
        RegressionError: If n <= p or X is rank-deficient
    """
    start_time = time.perf_counter()
    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(X, dtype=np.float64)
    n, p = X.shape
    if n <= p:
        raise RegressionError(
            f"Regression '{label}' of {outcome} has {n} observations for {p} terms"
        )
    rank = int(np.linalg.matrix_rank(X))
    if rank < p:
        raise RegressionError(
            f"Regression '{label}' of {outcome} is rank-deficient (rank={rank}, terms={p})"
        )

    fitted = sm.OLS(y, X).fit(cov_type="HC1")
    beta = np.asarray(fitted.params, dtype=np.float64)
    std_errors = np.asarray(fitted.bse, dtype=np.float64)
    r_squared = float(fitted.rsquared) if np.ptp(y) > 0 else float("nan")

    return RegressionResult(
        label=label,
        outcome=outcome,
        terms=tuple(terms),
        coefficients=beta,
        std_errors=std_errors,
        n_obs=n,
        n_dropped=n_dropped,
        r_squared=r_squared,
        computation_time_ms=(time.perf_counter() - start_time) * 1000,
    )


def regress_wta(
    wta_table: pd.DataFrame,
    covariates: ResolvedCovariates,
    outcome: str,
) -> RegressionResult:
    """
    Regress one WTA column on a resolved covariate specification.

    Respondents with a missing (flagged) outcome or without covariates are
    dropped and counted in n_dropped.

    Args:
        wta_table: Output of compute_wta_table
        covariates: Covariate specification resolved at startup
        outcome: WTA column to use as dependent variable

    Returns:
        RegressionResult

    Raises:
        KeyError: If the outcome column is absent
        RegressionError: If the remaining sample is too small or collinear
    """
    if outcome not in wta_table.columns:
        raise KeyError(f"WTA table has no column '{outcome}'")
    y = wta_table.set_index(RESPONDENT_COLUMN)[outcome]
    merged = covariates.design.join(y, how="inner")
    usable = np.isfinite(merged[outcome].to_numpy(dtype=np.float64))
    n_dropped = len(wta_table) - int(usable.sum())
    if n_dropped:
        warnings.warn(
            f"{n_dropped} respondents dropped from regression '{covariates.label}' "
            f"of {outcome} (flagged WTA or no covariates)",
            DataQualityWarning,
            stacklevel=2,
        )
    merged = merged.loc[usable]
    return fit_ols(
        merged[outcome].to_numpy(dtype=np.float64),
        merged.loc[:, list(covariates.terms)].to_numpy(dtype=np.float64),
        covariates.terms,
        label=covariates.label,
        outcome=outcome,
        n_dropped=n_dropped,
    )
