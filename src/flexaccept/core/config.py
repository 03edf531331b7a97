"""Configuration for the Krinsky-Robb replication pipeline.

All settings travel in one immutable `PipelineConfig` that is passed
explicitly to each stage. Experiment defaults (design attribute levels,
partial effects, covariate specifications) are module constants, like the
analysis constants of a replication script.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Literal, Mapping

from flexaccept.core.types import EXPERIMENTS

CovariateKind = Literal["continuous", "binary", "categorical"]
COVARIATE_KINDS: tuple[str, ...] = ("continuous", "binary", "categorical")

# =============================================================================
# EXPERIMENT DESIGN DEFAULTS
# =============================================================================

# Name of the contract indicator / alternative-specific constant column
CONTRACT_CONSTANT = "contract"

# Monetary attribute of both experiments (EUR per month paid to the household)
COMPENSATION = "compensation"

# Electric-vehicle smart-charging contracts
EV_ATTRIBUTE_LEVELS: dict[str, tuple[float, ...]] = {
    "min_range_km": (50.0, 100.0, 150.0),  # guaranteed remaining range
    "interventions_per_week": (1.0, 3.0, 5.0),
    "timing_evening": (0.0, 1.0),  # 1 = interventions during evening peak
}
EV_COMPENSATION_LEVELS: tuple[float, ...] = (5.0, 10.0, 20.0, 40.0)

# Heat-pump flexible operation contracts
HP_ATTRIBUTE_LEVELS: dict[str, tuple[float, ...]] = {
    "temperature_drop_c": (1.0, 2.0, 3.0),  # maximum indoor comfort deviation
    "interventions_per_week": (1.0, 3.0, 5.0),
    "timing_evening": (0.0, 1.0),
}
HP_COMPENSATION_LEVELS: tuple[float, ...] = (5.0, 10.0, 20.0, 40.0)

EXPERIMENT_ATTRIBUTE_LEVELS: dict[str, dict[str, tuple[float, ...]]] = {
    "EV": EV_ATTRIBUTE_LEVELS,
    "HP": HP_ATTRIBUTE_LEVELS,
}
EXPERIMENT_COMPENSATION_LEVELS: dict[str, tuple[float, ...]] = {
    "EV": EV_COMPENSATION_LEVELS,
    "HP": HP_COMPENSATION_LEVELS,
}

# =============================================================================
# SIMULATION DEFAULTS
# =============================================================================

N_REPLICATES = 1000  # Krinsky-Robb replications used in the paper
N_DRAWS = 2000  # inner Halton draws per integration
BURN_IN = 15  # leading Halton points discarded
SEED = 12345
CONFIDENCE = 0.95
WTA_EPSILON = 1e-6  # |cost coefficient| below this flags the WTA as missing


# =============================================================================
# SPECIFICATION VALUE OBJECTS
# =============================================================================


@dataclass(frozen=True)
class PartialEffectSpec:
    """
    One average partial effect to compute per replicate.

    Attributes:
        name: Statistic name under which the effect is stored
        attribute: Design attribute whose change is evaluated
        delta: None for the analytic marginal effect dP/dx; otherwise the
            discrete change P(x + delta) - P(x) on contract rows
    """

    name: str
    attribute: str
    delta: float | None = None


@dataclass(frozen=True)
class CovariateTerm:
    """A regressor of the auxiliary WTA regression: (name, kind)."""

    name: str
    kind: CovariateKind = "continuous"

    def __post_init__(self) -> None:
        if self.kind not in COVARIATE_KINDS:
            raise ValueError(
                f"Unknown covariate kind '{self.kind}'. Use one of {COVARIATE_KINDS}."
            )


@dataclass(frozen=True)
class RegressionModel:
    """
    A labelled covariate specification, fixed across all replicates.

    Attributes:
        label: Model label used in statistic names
        terms: Ordered covariate terms
    """

    label: str
    terms: tuple[CovariateTerm, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "terms", tuple(self.terms))
        names = [t.name for t in self.terms]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate covariates in model '{self.label}': {names}")


SOCIODEMOGRAPHIC_TERMS: tuple[CovariateTerm, ...] = (
    CovariateTerm("age", "continuous"),
    CovariateTerm("female", "binary"),
    CovariateTerm("income_group", "categorical"),
    CovariateTerm("tertiary_education", "binary"),
)

EV_USAGE_TERMS: tuple[CovariateTerm, ...] = (
    CovariateTerm("daily_km", "continuous"),
    CovariateTerm("home_charging", "binary"),
    CovariateTerm("pv_system", "binary"),
)

HP_DWELLING_TERMS: tuple[CovariateTerm, ...] = (
    CovariateTerm("dwelling_type", "categorical"),
    CovariateTerm("floor_area_m2", "continuous"),
    CovariateTerm("pv_system", "binary"),
)

EXPERIMENT_REGRESSION_MODELS: dict[str, tuple[RegressionModel, ...]] = {
    "EV": (
        RegressionModel("sociodemographics", SOCIODEMOGRAPHIC_TERMS),
        RegressionModel("full", SOCIODEMOGRAPHIC_TERMS + EV_USAGE_TERMS),
    ),
    "HP": (
        RegressionModel("sociodemographics", SOCIODEMOGRAPHIC_TERMS),
        RegressionModel("full", SOCIODEMOGRAPHIC_TERMS + HP_DWELLING_TERMS),
    ),
}


# =============================================================================
# PIPELINE CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable settings of one Krinsky-Robb run for one experiment.

    Attributes:
        experiment: "EV" or "HP"
        n_replicates: Number of Krinsky-Robb replicates R
        seed: Seed of the single random stream for replicate draws
        n_draws: Inner Halton draws S per integration
        burn_in: Leading Halton points discarded
        n_jobs: Worker processes for replicate tasks (-1 = all cores)
        confidence: Confidence level of the percentile interval
        wta_epsilon: Minimum |cost coefficient| for a usable WTA ratio
        cost_attribute: Monetary attribute in the WTA denominator
        wta_attributes: Attributes whose WTA is derived per respondent
        partial_effects: Average partial effects computed per replicate
        regression_models: Covariate specifications of the WTA regressions
        output_dir: Root directory for artifacts and statistics
    """

    experiment: str
    n_replicates: int = N_REPLICATES
    seed: int = SEED
    n_draws: int = N_DRAWS
    burn_in: int = BURN_IN
    n_jobs: int = -1
    confidence: float = CONFIDENCE
    wta_epsilon: float = WTA_EPSILON
    cost_attribute: str = COMPENSATION
    wta_attributes: tuple[str, ...] = ()
    partial_effects: tuple[PartialEffectSpec, ...] = ()
    regression_models: tuple[RegressionModel, ...] = ()
    output_dir: Path = field(default_factory=lambda: Path("output"))

    def __post_init__(self) -> None:
        if self.experiment not in EXPERIMENTS:
            raise ValueError(
                f"Unknown experiment '{self.experiment}'. Use one of {EXPERIMENTS}."
            )
        if self.n_replicates <= 0:
            raise ValueError(f"n_replicates must be positive, got {self.n_replicates}")
        if self.n_draws < 1:
            raise ValueError(f"n_draws must be >= 1, got {self.n_draws}")
        if self.burn_in < 0:
            raise ValueError(f"burn_in must be >= 0, got {self.burn_in}")
        if not 0.0 < self.confidence < 1.0:
            raise ValueError(f"confidence must be in (0, 1), got {self.confidence}")
        if self.wta_epsilon < 0:
            raise ValueError(f"wta_epsilon must be >= 0, got {self.wta_epsilon}")
        object.__setattr__(self, "wta_attributes", tuple(self.wta_attributes))
        object.__setattr__(self, "partial_effects", tuple(self.partial_effects))
        object.__setattr__(self, "regression_models", tuple(self.regression_models))
        object.__setattr__(self, "output_dir", Path(self.output_dir))

    def with_overrides(self, **changes: Any) -> "PipelineConfig":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dictionary."""
        data = asdict(self)
        data["output_dir"] = str(self.output_dir)
        data["wta_attributes"] = list(self.wta_attributes)
        data["partial_effects"] = [asdict(p) for p in self.partial_effects]
        data["regression_models"] = [
            {"label": m.label, "terms": [asdict(t) for t in m.terms]}
            for m in self.regression_models
        ]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from a mapping such as a parsed JSON file.

        Missing keys fall back to the experiment defaults.
        """
        experiment = str(data["experiment"])
        base = default_config(experiment)
        kwargs: dict[str, Any] = {
            k: v
            for k, v in data.items()
            if k not in ("partial_effects", "regression_models", "wta_attributes")
        }
        if "wta_attributes" in data:
            kwargs["wta_attributes"] = tuple(data["wta_attributes"])
        if "partial_effects" in data:
            kwargs["partial_effects"] = tuple(
                PartialEffectSpec(**p) for p in data["partial_effects"]
            )
        if "regression_models" in data:
            kwargs["regression_models"] = tuple(
                RegressionModel(
                    label=m["label"],
                    terms=tuple(CovariateTerm(**t) for t in m["terms"]),
                )
                for m in data["regression_models"]
            )
        return base.with_overrides(**kwargs)


def default_config(experiment: str, **overrides: Any) -> PipelineConfig:
    """
    Paper defaults for one experiment.

    Partial effects cover every non-monetary design attribute plus the
    compensation; WTA is derived for every non-monetary design attribute.

    Args:
        experiment: "EV" or "HP"
        **overrides: Fields to replace in the default config

    Returns:
        PipelineConfig
    """
    if experiment not in EXPERIMENT_ATTRIBUTE_LEVELS:
        raise ValueError(f"Unknown experiment '{experiment}'. Use one of {EXPERIMENTS}.")
    attributes = tuple(EXPERIMENT_ATTRIBUTE_LEVELS[experiment])
    effects = tuple(
        PartialEffectSpec(name=f"ape:{a}", attribute=a) for a in attributes
    ) + (PartialEffectSpec(name=f"ape:{COMPENSATION}", attribute=COMPENSATION),)
    config = PipelineConfig(
        experiment=experiment,
        cost_attribute=COMPENSATION,
        wta_attributes=attributes,
        partial_effects=effects,
        regression_models=EXPERIMENT_REGRESSION_MODELS[experiment],
    )
    return config.with_overrides(**overrides) if overrides else config
