"""
flexaccept: Krinsky-Robb uncertainty propagation for flexibility-contract acceptance.

Draws replicate coefficient vectors of a fitted mixed-logit model, freezes
them into reusable artifacts, and propagates each replicate through
acceptance probabilities, average partial effects, respondent-level
willingness to accept and auxiliary regressions into percentile confidence
intervals and bootstrap p-values.
"""

from flexaccept.core.model import ModelSpecification, PointEstimate, ModelArtifact
from flexaccept.core.panel import ScenarioDesign, ChoicePanel
from flexaccept.core.config import PipelineConfig, default_config
from flexaccept.core.result import (
    ConditionalResult,
    RegressionResult,
    AggregateResult,
    ReplicateFailure,
    ReplicationRunResult,
)
from flexaccept.algorithms.design import build_tioli_design, generate_scenario_design
from flexaccept.algorithms.replicates import (
    draw_replicates,
    freeze_artifact,
    validated_artifact,
)
from flexaccept.algorithms.prediction import (
    predict_probabilities,
    compute_average_partial_effect,
    compute_average_partial_effects,
)
from flexaccept.algorithms.conditional import (
    derive_conditional_parameters,
    simulated_log_likelihood,
    compute_wta,
    compute_wta_table,
)
from flexaccept.algorithms.aggregation import aggregate, aggregate_statistics
from flexaccept.store import ModelArtifactStore, ReplicationStatisticSink
from flexaccept.io import load_experiment_inputs, load_model_estimate
from flexaccept.pipeline import KrinskyRobbPipeline

__version__ = "0.1.0"

__all__ = [
    # Data structures
    "ModelSpecification",
    "PointEstimate",
    "ModelArtifact",
    "ScenarioDesign",
    "ChoicePanel",
    "PipelineConfig",
    "default_config",
    # Result types
    "ConditionalResult",
    "RegressionResult",
    "AggregateResult",
    "ReplicateFailure",
    "ReplicationRunResult",
    # Designs
    "build_tioli_design",
    "generate_scenario_design",
    # Replicate draws
    "draw_replicates",
    "freeze_artifact",
    "validated_artifact",
    # Prediction
    "predict_probabilities",
    "compute_average_partial_effect",
    "compute_average_partial_effects",
    # Conditional parameters and WTA
    "derive_conditional_parameters",
    "simulated_log_likelihood",
    "compute_wta",
    "compute_wta_table",
    # Aggregation
    "aggregate",
    "aggregate_statistics",
    # Persistence and orchestration
    "ModelArtifactStore",
    "ReplicationStatisticSink",
    "load_experiment_inputs",
    "load_model_estimate",
    "KrinskyRobbPipeline",
]
