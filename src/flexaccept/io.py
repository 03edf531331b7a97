"""Loaders for the tables produced by the estimation and data-preparation stages.

Expected input layout (one directory per experiment):

    <inputs>/<experiment>/point_estimate.json
    <inputs>/<experiment>/choices.parquet      (or choices.csv)
    <inputs>/<experiment>/covariates.parquet   (or covariates.csv)

point_estimate.json holds the fitted model:

    {
      "experiment": "EV",
      "specification": {"attributes": [...], "random": [...], "correlated": false},
      "parameter_names": [...],            (optional)
      "coefficients": [...],
      "covariance": [[...], ...]
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from flexaccept.core.exceptions import DataValidationError, NotFoundError
from flexaccept.core.model import ModelSpecification, PointEstimate
from flexaccept.core.panel import RESPONDENT_COLUMN, ChoicePanel

POINT_ESTIMATE_FILE = "point_estimate.json"
CHOICES_STEM = "choices"
COVARIATES_STEM = "covariates"


def _require_file(path: Path, what: str) -> Path:
    if not path.is_file():
        raise NotFoundError(f"{what} not found at {path}")
    return path


def read_table(path: str | os.PathLike) -> pd.DataFrame:
    """Read a parquet or CSV table, chosen by file suffix.

    Raises:
        NotFoundError: If the file does not exist
        ValueError: If the suffix is neither .parquet nor .csv
    """
    path = _require_file(Path(path), "Table")
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    if path.suffix == ".csv":
        return pd.read_csv(path)
    raise ValueError(f"Unsupported table format '{path.suffix}' ({path})")


def _find_table(directory: Path, stem: str) -> Path:
    for suffix in (".parquet", ".csv"):
        candidate = directory / f"{stem}{suffix}"
        if candidate.is_file():
            return candidate
    raise NotFoundError(f"No {stem}.parquet or {stem}.csv in {directory}")


def load_model_estimate(path: str | os.PathLike) -> tuple[PointEstimate, ModelSpecification]:
    """
    Load a fitted model and its utility specification.

    Args:
        path: point_estimate.json written by the estimation stage

    Returns:
        Tuple (PointEstimate, ModelSpecification); the estimate is checked
        against the specification

    Raises:
        NotFoundError: If the file does not exist
        DataValidationError: If the file lacks the specification
        SpecificationMismatchError: If the estimate does not fit the specification
    """
    path = _require_file(Path(path), "Point estimate")
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if "specification" not in data:
        raise DataValidationError(f"{path} has no 'specification' entry")
    specification = ModelSpecification.from_dict(data["specification"])
    estimate = PointEstimate.from_dict(data)
    estimate.check_against(specification)
    return estimate, specification


def load_point_estimate(path: str | os.PathLike) -> PointEstimate:
    """Load only the mean vector and covariance of a fitted model."""
    return load_model_estimate(path)[0]


def load_choice_panel(
    path: str | os.PathLike,
    attributes: tuple[str, ...],
    experiment: str | None = None,
) -> ChoicePanel:
    """Load and validate an observed-choice panel."""
    return ChoicePanel(data=read_table(path), attributes=attributes, experiment=experiment)


def load_covariates(path: str | os.PathLike) -> pd.DataFrame:
    """Load the respondent covariate table.

    Raises:
        DataValidationError: If respondent_id is missing or not unique
    """
    table = read_table(path)
    if RESPONDENT_COLUMN not in table.columns:
        raise DataValidationError(f"Covariate table {path} has no '{RESPONDENT_COLUMN}' column")
    if table[RESPONDENT_COLUMN].duplicated().any():
        raise DataValidationError(f"Covariate table {path} has duplicate respondent ids")
    return table


@dataclass(frozen=True, eq=False)
class ExperimentInputs:
    """Shared inputs of one experiment, validated once before any replicate runs."""

    point_estimate: PointEstimate
    specification: ModelSpecification
    panel: ChoicePanel
    covariates: pd.DataFrame


def load_experiment_inputs(directory: str | os.PathLike, experiment: str) -> ExperimentInputs:
    """
    Load everything an experiment needs from <directory>/<experiment>/.

    Raises:
        NotFoundError: If a required file is missing
    """
    base = Path(directory) / experiment
    estimate, specification = load_model_estimate(base / POINT_ESTIMATE_FILE)
    panel = load_choice_panel(
        _find_table(base, CHOICES_STEM), specification.attributes, experiment
    )
    covariates = load_covariates(_find_table(base, COVARIATES_STEM))
    return ExperimentInputs(
        point_estimate=estimate,
        specification=specification,
        panel=panel,
        covariates=covariates,
    )
