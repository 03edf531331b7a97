"""Tabular containers for scenario designs and observed choices.

    - ScenarioDesign: full-factorial take-it-or-leave-it (TIOLI) table with
      one contract row and one opt-out row per scenario
    - ChoicePanel: observed choices of each respondent across the choice
      situations of the survey experiment

Both containers copy their input DataFrame, sort it into a canonical row
order and pre-compute the group boundaries used by the logit kernels. They
are never mutated; adding predicted probabilities returns a new design.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from flexaccept.core.exceptions import (
    DataValidationError,
    NaNInfError,
    SpecificationMismatchError,
)

SCENARIO_COLUMN = "scenario_id"
ALTERNATIVE_COLUMN = "alternative"
RESPONDENT_COLUMN = "respondent_id"
CHOSEN_COLUMN = "chosen"
CONTRACT = "contract"
OPT_OUT = "opt_out"


def _require_columns(data: pd.DataFrame, columns: Sequence[str], what: str) -> None:
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise SpecificationMismatchError(
            f"{what} is missing columns {missing}. Available: {list(data.columns)}"
        )


def _attribute_matrix(
    data: pd.DataFrame, attributes: Sequence[str], what: str
) -> NDArray[np.float64]:
    _require_columns(data, attributes, what)
    X = data.loc[:, list(attributes)].to_numpy(dtype=np.float64)
    if not np.all(np.isfinite(X)):
        n_bad = int(np.sum(~np.isfinite(X)))
        raise NaNInfError(f"{what} has {n_bad} NaN/Inf attribute values")
    return np.ascontiguousarray(X)


def _group_starts(keys: NDArray[Any]) -> NDArray[np.int64]:
    """Row offsets where a new group begins, with the row count appended."""
    n = len(keys)
    if n == 0:
        return np.zeros(1, dtype=np.int64)
    change = np.flatnonzero(keys[1:] != keys[:-1]) + 1
    return np.concatenate(([0], change, [n])).astype(np.int64)


# =============================================================================
# SCENARIO DESIGN
# =============================================================================


@dataclass(frozen=True, eq=False)
class ScenarioDesign:
    """
    Take-it-or-leave-it scenario table used for probability prediction.

    Rows are sorted by scenario_id with the contract row first. Within every
    scenario exactly one row is the contract and one is the opt-out, and all
    attribute values of the opt-out row are zero.

    Attributes:
        data: DataFrame with scenario_id, alternative and attribute columns
            (plus any probability columns added by prediction)
        attributes: Attribute columns of the design
        experiment: Optional experiment label

    Example:
        >>> design = generate_scenario_design("EV", compensation_levels=[5, 10])
        >>> design.n_scenarios
        36
    """

    data: pd.DataFrame
    attributes: tuple[str, ...]
    experiment: str | None = None
    group_starts: NDArray[np.int64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        attributes = tuple(str(a) for a in self.attributes)
        data = self.data.copy()
        _require_columns(data, [SCENARIO_COLUMN, ALTERNATIVE_COLUMN], "Scenario design")
        _require_columns(data, attributes, "Scenario design")

        order = (data[ALTERNATIVE_COLUMN] != CONTRACT).astype(np.int64)
        data = (
            data.assign(_order=order)
            .sort_values([SCENARIO_COLUMN, "_order"], kind="mergesort")
            .drop(columns="_order")
            .reset_index(drop=True)
        )
        object.__setattr__(self, "attributes", attributes)
        object.__setattr__(self, "data", data)
        self.validate()
        object.__setattr__(
            self, "group_starts", _group_starts(data[SCENARIO_COLUMN].to_numpy())
        )

    def validate(self) -> None:
        """Check the TIOLI pairing invariant.

        Raises:
            DataValidationError: If a scenario does not have exactly one
                contract and one opt-out row, or an opt-out row carries a
                non-zero attribute value.
        """
        data = self.data
        alts = set(data[ALTERNATIVE_COLUMN].unique())
        unknown = sorted(str(a) for a in alts - {CONTRACT, OPT_OUT})
        if unknown:
            raise DataValidationError(
                f"Unknown alternatives {unknown}; expected '{CONTRACT}' and '{OPT_OUT}'"
            )
        counts = pd.crosstab(data[SCENARIO_COLUMN], data[ALTERNATIVE_COLUMN])
        for alt in (CONTRACT, OPT_OUT):
            per_scenario = counts[alt] if alt in counts else pd.Series(0, index=counts.index)
            bad = per_scenario.index[per_scenario != 1].tolist()
            if bad:
                raise DataValidationError(
                    f"{len(bad)} scenarios do not have exactly one '{alt}' row "
                    f"(first: {bad[:5]})"
                )
        opt_out = data.loc[data[ALTERNATIVE_COLUMN] == OPT_OUT, list(self.attributes)]
        nonzero = opt_out.to_numpy(dtype=np.float64) != 0.0
        if np.any(nonzero):
            cols = [a for a, bad in zip(self.attributes, nonzero.any(axis=0)) if bad]
            raise DataValidationError(
                f"Opt-out rows must have zero attribute values; non-zero in {cols}"
            )

    @property
    def n_rows(self) -> int:
        """Number of rows (two per scenario)."""
        return len(self.data)

    @property
    def n_scenarios(self) -> int:
        """Number of scenarios."""
        return len(self.group_starts) - 1

    @property
    def contract_mask(self) -> NDArray[np.bool_]:
        """Boolean mask of contract rows."""
        return (self.data[ALTERNATIVE_COLUMN] == CONTRACT).to_numpy()

    def attribute_matrix(self, attributes: Sequence[str]) -> NDArray[np.float64]:
        """Rows x K matrix of the requested attribute columns.

        Raises:
            SpecificationMismatchError: If an attribute column is absent.
        """
        return _attribute_matrix(self.data, attributes, "Scenario design")

    def with_column(self, name: str, values: NDArray[np.float64]) -> "ScenarioDesign":
        """Return a new design with one added column.

        Existing columns are never overwritten.
        """
        if name in self.data.columns:
            raise DataValidationError(f"Design already has a column named '{name}'")
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (self.n_rows,):
            raise DataValidationError(
                f"Column '{name}' has shape {values.shape}, expected ({self.n_rows},)"
            )
        data = self.data.copy()
        data[name] = values
        return ScenarioDesign(data=data, attributes=self.attributes, experiment=self.experiment)

    def copy(self) -> "ScenarioDesign":
        """Independent copy for a single consumer."""
        return ScenarioDesign(
            data=self.data.copy(), attributes=self.attributes, experiment=self.experiment
        )

    def __repr__(self) -> str:
        """Compact string representation."""
        return (
            f"ScenarioDesign({self.experiment}, scenarios={self.n_scenarios}, "
            f"attributes={list(self.attributes)})"
        )


# =============================================================================
# CHOICE PANEL
# =============================================================================


@dataclass(frozen=True, eq=False)
class ChoicePanel:
    """
    Observed choices: one row per respondent x choice situation x alternative.

    Rows are sorted by respondent, then scenario, then alternative (contract
    first). Every choice situation must have at least two alternatives and
    exactly one chosen row.

    Attributes:
        data: DataFrame with respondent_id, scenario_id, alternative, chosen
            and attribute columns
        attributes: Attribute columns used in utility
        experiment: Optional experiment label

    Properties:
        respondent_ids: Respondent identifiers in panel order
        situation_starts: Row offsets of each choice situation (+ row count)
        chosen_rows: Row index of the chosen alternative of each situation
        respondent_bounds: Situation offsets of each respondent (+ count)
    """

    data: pd.DataFrame
    attributes: tuple[str, ...]
    experiment: str | None = None
    respondent_ids: NDArray[Any] = field(init=False, repr=False)
    situation_starts: NDArray[np.int64] = field(init=False, repr=False)
    chosen_rows: NDArray[np.int64] = field(init=False, repr=False)
    respondent_bounds: NDArray[np.int64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        attributes = tuple(str(a) for a in self.attributes)
        data = self.data.copy()
        _require_columns(
            data,
            [RESPONDENT_COLUMN, SCENARIO_COLUMN, ALTERNATIVE_COLUMN, CHOSEN_COLUMN],
            "Choice panel",
        )
        _require_columns(data, attributes, "Choice panel")
        if data.empty:
            raise DataValidationError("Choice panel is empty")
        if data[CHOSEN_COLUMN].isna().any():
            raise NaNInfError("Choice panel has missing values in 'chosen'")

        data[CHOSEN_COLUMN] = data[CHOSEN_COLUMN].astype(bool)
        order = (data[ALTERNATIVE_COLUMN] != CONTRACT).astype(np.int64)
        data = (
            data.assign(_order=order)
            .sort_values(
                [RESPONDENT_COLUMN, SCENARIO_COLUMN, "_order", ALTERNATIVE_COLUMN],
                kind="mergesort",
            )
            .drop(columns="_order")
            .reset_index(drop=True)
        )
        object.__setattr__(self, "attributes", attributes)
        object.__setattr__(self, "data", data)
        # Raises early on NaN attributes
        _attribute_matrix(data, attributes, "Choice panel")

        situation = data.groupby(
            [RESPONDENT_COLUMN, SCENARIO_COLUMN], sort=False
        ).ngroup()
        starts = _group_starts(situation.to_numpy())
        sizes = np.diff(starts)
        if np.any(sizes < 2):
            raise DataValidationError(
                f"{int(np.sum(sizes < 2))} choice situations have fewer than two alternatives"
            )

        chosen = data[CHOSEN_COLUMN].to_numpy()
        n_chosen = np.add.reduceat(chosen.astype(np.int64), starts[:-1])
        if np.any(n_chosen != 1):
            bad = int(np.sum(n_chosen != 1))
            raise DataValidationError(
                f"{bad} choice situations do not have exactly one chosen alternative"
            )
        chosen_idx = np.flatnonzero(chosen).astype(np.int64)

        respondents = data[RESPONDENT_COLUMN].to_numpy()
        first_rows = respondents[starts[:-1]]
        bounds = _group_starts(first_rows)

        object.__setattr__(self, "situation_starts", starts)
        object.__setattr__(self, "chosen_rows", chosen_idx)
        object.__setattr__(self, "respondent_bounds", bounds)
        object.__setattr__(self, "respondent_ids", first_rows[bounds[:-1]])

    @property
    def n_respondents(self) -> int:
        """Number of respondents."""
        return len(self.respondent_ids)

    @property
    def n_situations(self) -> int:
        """Number of choice situations across all respondents."""
        return len(self.chosen_rows)

    def attribute_matrix(self, attributes: Sequence[str]) -> NDArray[np.float64]:
        """Rows x K matrix of the requested attribute columns."""
        return _attribute_matrix(self.data, attributes, "Choice panel")

    def respondent_slice(self, position: int) -> tuple[int, int, int, int]:
        """Row and situation ranges of the respondent at `position`.

        Returns:
            Tuple (first_row, end_row, first_situation, end_situation)
        """
        g0 = int(self.respondent_bounds[position])
        g1 = int(self.respondent_bounds[position + 1])
        return int(self.situation_starts[g0]), int(self.situation_starts[g1]), g0, g1

    def copy(self) -> "ChoicePanel":
        """Independent copy for a single consumer."""
        return ChoicePanel(
            data=self.data.copy(), attributes=self.attributes, experiment=self.experiment
        )

    def __repr__(self) -> str:
        """Compact string representation."""
        return (
            f"ChoicePanel({self.experiment}, respondents={self.n_respondents}, "
            f"situations={self.n_situations})"
        )
