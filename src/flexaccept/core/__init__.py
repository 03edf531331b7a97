"""Core data structures for flexaccept."""

from flexaccept.core.model import ModelSpecification, PointEstimate, ModelArtifact
from flexaccept.core.panel import ScenarioDesign, ChoicePanel
from flexaccept.core.config import (
    PipelineConfig,
    PartialEffectSpec,
    CovariateTerm,
    RegressionModel,
    default_config,
)
from flexaccept.core.result import (
    ConditionalResult,
    RegressionResult,
    AggregateResult,
    ReplicateFailure,
    ReplicationRunResult,
)
from flexaccept.core.exceptions import (
    FlexAcceptError,
    DataValidationError,
    DimensionError,
    NaNInfError,
    NumericalError,
    RegressionError,
    NotFoundError,
    ArtifactNotFoundError,
    SpecificationMismatchError,
    DegenerateRatioError,
    InvalidArgumentError,
    InsufficientReplicatesError,
    DataQualityWarning,
    NumericalInstabilityWarning,
)

__all__ = [
    "ModelSpecification",
    "PointEstimate",
    "ModelArtifact",
    "ScenarioDesign",
    "ChoicePanel",
    "PipelineConfig",
    "PartialEffectSpec",
    "CovariateTerm",
    "RegressionModel",
    "default_config",
    "ConditionalResult",
    "RegressionResult",
    "AggregateResult",
    "ReplicateFailure",
    "ReplicationRunResult",
    # Exceptions
    "FlexAcceptError",
    "DataValidationError",
    "DimensionError",
    "NaNInfError",
    "NumericalError",
    "RegressionError",
    "NotFoundError",
    "ArtifactNotFoundError",
    "SpecificationMismatchError",
    "DegenerateRatioError",
    "InvalidArgumentError",
    "InsufficientReplicatesError",
    "DataQualityWarning",
    "NumericalInstabilityWarning",
]
