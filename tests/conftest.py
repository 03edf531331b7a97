"""Pytest fixtures for flexaccept tests."""

import numpy as np
import pandas as pd
import pytest

from flexaccept import (
    ChoicePanel,
    ModelArtifact,
    ModelSpecification,
    PointEstimate,
    build_tioli_design,
)
from flexaccept.core.config import CovariateTerm, PipelineConfig, RegressionModel


MIXED_ATTRIBUTES = ("contract", "distance", "compensation")


def make_tioli_panel(
    n_respondents: int,
    n_situations: int,
    seed: int = 0,
    b_contract: float = 0.5,
    b_distance: float = -0.8,
    b_compensation: float = 0.1,
    sd_contract: float = 1.0,
    sd_distance: float = 0.5,
) -> pd.DataFrame:
    """
    Simulated take-it-or-leave-it choices from a mixed logit.

    Each respondent draws individual contract and distance coefficients and
    then accepts or rejects n_situations random contracts.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for r in range(1, n_respondents + 1):
        bc = b_contract + sd_contract * rng.standard_normal()
        bd = b_distance + sd_distance * rng.standard_normal()
        for s in range(1, n_situations + 1):
            distance = float(rng.choice([1.0, 2.0, 3.0]))
            compensation = float(rng.choice([5.0, 10.0, 20.0]))
            v = bc + bd * distance + b_compensation * compensation
            accept = rng.random() < 1.0 / (1.0 + np.exp(-v))
            rows.append((r, s, "contract", accept, 1.0, distance, compensation))
            rows.append((r, s, "opt_out", not accept, 0.0, 0.0, 0.0))
    return pd.DataFrame(
        rows,
        columns=["respondent_id", "scenario_id", "alternative", "chosen", *MIXED_ATTRIBUTES],
    )


@pytest.fixture
def fixed_spec() -> ModelSpecification:
    """Two fixed coefficients: contract constant and one attribute x."""
    return ModelSpecification(attributes=("contract", "x"))


@pytest.fixture
def fixed_estimate() -> PointEstimate:
    """Point estimate b = [1.0, -0.5], V = diag(0.04, 0.01)."""
    return PointEstimate(
        coefficients=np.array([1.0, -0.5]),
        covariance=np.array([[0.04, 0.0], [0.0, 0.01]]),
        experiment="EV",
    )


@pytest.fixture
def fixed_design():
    """TIOLI design over x in {1, 2, 3, 4}."""
    return build_tioli_design({"x": [1.0, 2.0, 3.0, 4.0]}, experiment="EV")


@pytest.fixture
def mixed_spec() -> ModelSpecification:
    """Random contract and distance coefficients, fixed compensation."""
    return ModelSpecification(
        attributes=MIXED_ATTRIBUTES,
        random=("contract", "distance"),
    )


@pytest.fixture
def mixed_estimate() -> PointEstimate:
    """Means (0.5, -0.8, 0.1) and standard deviations (1.0, 0.5)."""
    return PointEstimate(
        coefficients=np.array([0.5, -0.8, 0.1, 1.0, 0.5]),
        covariance=np.diag([0.01, 0.004, 0.0001, 0.02, 0.01]),
        experiment="EV",
    )


@pytest.fixture
def mixed_artifact(mixed_spec, mixed_estimate) -> ModelArtifact:
    """Validated artifact of the mixed model."""
    return ModelArtifact(
        specification=mixed_spec,
        coefficients=mixed_estimate.coefficients,
        experiment="EV",
        replicate_index=0,
    )


@pytest.fixture
def mixed_design():
    """TIOLI design over distance x compensation (9 scenarios)."""
    return build_tioli_design(
        {"distance": [1.0, 2.0, 3.0], "compensation": [5.0, 10.0, 20.0]},
        experiment="EV",
    )


@pytest.fixture
def mixed_panel() -> ChoicePanel:
    """40 respondents with 8 TIOLI choices each."""
    return ChoicePanel(
        data=make_tioli_panel(40, 8, seed=7),
        attributes=MIXED_ATTRIBUTES,
        experiment="EV",
    )


@pytest.fixture
def covariates() -> pd.DataFrame:
    """Covariates of the 40 panel respondents."""
    rng = np.random.default_rng(11)
    n = 40
    return pd.DataFrame(
        {
            "respondent_id": np.arange(1, n + 1),
            "age": rng.integers(20, 80, size=n).astype(float),
            "female": rng.integers(0, 2, size=n),
            "region": np.array(["north", "south", "west", "south"] * (n // 4)),
        }
    )


@pytest.fixture
def regression_model() -> RegressionModel:
    """Covariate specification with every term kind."""
    return RegressionModel(
        "basic",
        (
            CovariateTerm("age", "continuous"),
            CovariateTerm("female", "binary"),
            CovariateTerm("region", "categorical"),
        ),
    )


@pytest.fixture
def mixed_config(tmp_path, regression_model) -> PipelineConfig:
    """Small, fast configuration for the mixed model."""
    from flexaccept.core.config import PartialEffectSpec

    return PipelineConfig(
        experiment="EV",
        n_replicates=5,
        seed=3,
        n_draws=50,
        burn_in=15,
        n_jobs=1,
        cost_attribute="compensation",
        wta_attributes=("distance",),
        partial_effects=(
            PartialEffectSpec("ape:distance", "distance"),
            PartialEffectSpec("ape:compensation", "compensation"),
        ),
        regression_models=(regression_model,),
        output_dir=tmp_path / "output",
    )
