"""Simulation algorithms of the Krinsky-Robb pipeline."""

from flexaccept.algorithms.draws import halton_normal_draws, HaltonDrawSequence
from flexaccept.algorithms.design import build_tioli_design, generate_scenario_design
from flexaccept.algorithms.replicates import (
    covariance_factor,
    draw_replicates,
    replicate_coefficients,
    freeze_artifact,
    validated_artifact,
)
from flexaccept.algorithms.prediction import (
    predict_probabilities,
    simulate_choice_probabilities,
    compute_average_partial_effect,
    compute_average_partial_effects,
)
from flexaccept.algorithms.conditional import (
    derive_conditional_parameters,
    simulated_log_likelihood,
    compute_wta,
    compute_wta_table,
)
from flexaccept.algorithms.regression import (
    resolve_covariates,
    fit_ols,
    regress_wta,
)
from flexaccept.algorithms.aggregation import (
    aggregate,
    aggregate_statistics,
    bootstrap_p_value,
)

__all__ = [
    # Draws and designs
    "halton_normal_draws",
    "HaltonDrawSequence",
    "build_tioli_design",
    "generate_scenario_design",
    # Stage 1: replicate draws
    "covariance_factor",
    "draw_replicates",
    "replicate_coefficients",
    "freeze_artifact",
    "validated_artifact",
    # Stage 3: prediction
    "predict_probabilities",
    "simulate_choice_probabilities",
    "compute_average_partial_effect",
    "compute_average_partial_effects",
    # Stage 4: conditional parameters
    "derive_conditional_parameters",
    "simulated_log_likelihood",
    "compute_wta",
    "compute_wta_table",
    "resolve_covariates",
    "fit_ols",
    "regress_wta",
    # Stage 5: aggregation
    "aggregate",
    "aggregate_statistics",
    "bootstrap_p_value",
]
