"""Custom exceptions and warnings for flexaccept.

This module provides a hierarchy of exceptions for the failure modes of the
Krinsky-Robb simulation pipeline. All errors inherit from ValueError so that
callers catching ValueError keep working.

Exception Hierarchy:
    FlexAcceptError (ValueError)
    ├── DataValidationError
    │   ├── DimensionError
    │   └── NaNInfError
    ├── NumericalError
    │   └── RegressionError
    ├── NotFoundError (also LookupError)
    │   └── ArtifactNotFoundError
    ├── SpecificationMismatchError
    ├── DegenerateRatioError
    ├── InvalidArgumentError
    └── InsufficientReplicatesError

Warning Classes:
    DataQualityWarning (UserWarning)
    NumericalInstabilityWarning (UserWarning)

Recovery policy:
    NumericalError and ArtifactNotFoundError raised while processing a single
    replicate drop that replicate only. Everything else raised while
    validating shared inputs (point estimate, design, panel, covariates) is
    fatal for the whole run.
"""

from __future__ import annotations


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class FlexAcceptError(ValueError):
    """Base exception for all flexaccept errors.

    Example:
        >>> try:
        ...     store.load("EV", 17)
        ... except FlexAcceptError as e:
        ...     print(f"flexaccept error: {e}")
    """

    pass


# =============================================================================
# DATA VALIDATION EXCEPTIONS
# =============================================================================


class DataValidationError(FlexAcceptError):
    """Raised when an input table or array fails validation checks.

    Common causes:
        - Missing required columns in a design or choice panel
        - A scenario without exactly one chosen alternative
        - Covariance matrix that is not square
    """

    pass


class DimensionError(DataValidationError):
    """Raised when array dimensions are incompatible.

    Example:
        >>> PointEstimate(coefficients=np.zeros(3), covariance=np.eye(2))
        DimensionError: covariance shape (2, 2) does not match 3 coefficients
    """

    pass


class NaNInfError(DataValidationError):
    """Raised when NaN or Inf values are found where finite numbers are required."""

    pass


# =============================================================================
# COMPUTATION EXCEPTIONS
# =============================================================================


class NumericalError(FlexAcceptError):
    """Raised when a numerical sub-step of a replicate cannot be completed.

    Common causes:
        - Covariance matrix with negative eigenvalues (the source model's
          optimizer did not reach a point with a positive-definite Hessian)
        - Cholesky factorization failure
        - Rank-deficient regression design

    Policy: abort the affected replicate only; never coerce to zero.
    """

    pass


class RegressionError(NumericalError):
    """Raised when an auxiliary OLS regression cannot produce estimates.

    Common causes:
        - Perfect multicollinearity among covariates
        - Fewer usable respondents than regression terms
        - A categorical level absent after WTA flags removed respondents
    """

    pass


class NotFoundError(FlexAcceptError, LookupError):
    """Raised when a persisted artifact or upstream table does not exist.

    The caller must re-run the stage that produces the missing object.
    """

    pass


class ArtifactNotFoundError(NotFoundError):
    """Raised when the artifact store has no entry for (experiment, replicate).

    Example:
        >>> store.load("HP", 42)
        ArtifactNotFoundError: No artifact for experiment 'HP' replicate 42...
    """

    pass


class SpecificationMismatchError(FlexAcceptError):
    """Raised when a design, panel or point estimate disagrees with the model
    specification (missing attribute columns, wrong parameter count).

    This is a configuration error and is fatal at startup.
    """

    pass


class DegenerateRatioError(FlexAcceptError):
    """Raised when a willingness-to-accept ratio has a near-zero denominator.

    Only the scalar helper raises this. Table-level WTA computations flag the
    affected respondents as missing instead and emit a
    NumericalInstabilityWarning.
    """

    pass


class InvalidArgumentError(FlexAcceptError):
    """Raised when a run parameter is out of range, e.g. a replicate count R <= 0."""

    pass


class InsufficientReplicatesError(FlexAcceptError):
    """Raised when aggregation is requested with zero usable replicates.

    No confidence interval can be computed from an empty distribution.
    """

    pass


# =============================================================================
# WARNINGS
# =============================================================================


class DataQualityWarning(UserWarning):
    """Warning for data quality issues that don't prevent computation.

    Emitted when:
        - Respondents are dropped from a regression because of flagged WTA
        - A design carries attribute columns the model does not use
    """

    pass


class NumericalInstabilityWarning(UserWarning):
    """Warning for potential numerical issues in computations.

    Emitted when:
        - WTA denominators fall below the configured epsilon
        - Likelihood weights collapse onto a single simulation draw
    """

    pass
