"""Full-factorial take-it-or-leave-it scenario designs.

Every combination of attribute levels becomes one scenario with two rows:
the contract (carrying the attribute levels and a contract indicator of 1)
and the opt-out (all attribute values zero). The design is generated once
per experiment and reused by every replicate's prediction step.
"""

from __future__ import annotations

import itertools
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from flexaccept.core.config import (
    COMPENSATION,
    CONTRACT_CONSTANT,
    EXPERIMENT_ATTRIBUTE_LEVELS,
    EXPERIMENT_COMPENSATION_LEVELS,
)
from flexaccept.core.panel import (
    ALTERNATIVE_COLUMN,
    CONTRACT,
    OPT_OUT,
    SCENARIO_COLUMN,
    ScenarioDesign,
)


def build_tioli_design(
    levels: Mapping[str, Sequence[float]],
    constant: str | None = CONTRACT_CONSTANT,
    experiment: str | None = None,
) -> ScenarioDesign:
    """
    Expand attribute level sets into a two-row-per-scenario TIOLI table.

    Args:
        levels: Ordered mapping attribute -> level set. The full factorial
            is enumerated with the first attribute varying slowest.
        constant: Name of the contract indicator column (None to omit)
        experiment: Optional experiment label

    Returns:
        ScenarioDesign with scenario_id, alternative, the constant and one
        column per attribute

    Example:
        >>> design = build_tioli_design({"x": [1, 2], "compensation": [5, 10]})
        >>> design.n_scenarios, design.n_rows
        (4, 8)
    """
    if not levels:
        raise ValueError("At least one attribute with levels is required")
    names = [str(a) for a in levels]
    for name, values in levels.items():
        if len(values) == 0:
            raise ValueError(f"Attribute '{name}' has no levels")
    if constant is not None and constant in names:
        raise ValueError(f"Constant column '{constant}' clashes with an attribute name")

    combos = np.array(
        list(itertools.product(*(np.asarray(v, dtype=np.float64) for v in levels.values()))),
        dtype=np.float64,
    )
    n = combos.shape[0]
    scenario_ids = np.arange(1, n + 1, dtype=np.int64)

    contract = pd.DataFrame(combos, columns=names)
    opt_out = pd.DataFrame(np.zeros_like(combos), columns=names)
    attributes = names
    if constant is not None:
        contract.insert(0, constant, 1.0)
        opt_out.insert(0, constant, 0.0)
        attributes = [constant] + names

    contract.insert(0, ALTERNATIVE_COLUMN, CONTRACT)
    opt_out.insert(0, ALTERNATIVE_COLUMN, OPT_OUT)
    contract.insert(0, SCENARIO_COLUMN, scenario_ids)
    opt_out.insert(0, SCENARIO_COLUMN, scenario_ids)

    data = pd.concat([contract, opt_out], ignore_index=True)
    return ScenarioDesign(data=data, attributes=tuple(attributes), experiment=experiment)


def generate_scenario_design(
    experiment: str,
    compensation_levels: Sequence[float] | None = None,
) -> ScenarioDesign:
    """
    Paper design of one experiment: attribute levels x compensation levels.

    Args:
        experiment: "EV" or "HP"
        compensation_levels: Monthly compensation levels; defaults to the
            levels used in the survey

    Returns:
        ScenarioDesign for the experiment
    """
    if experiment not in EXPERIMENT_ATTRIBUTE_LEVELS:
        raise ValueError(
            f"Unknown experiment '{experiment}'. "
            f"Use one of {sorted(EXPERIMENT_ATTRIBUTE_LEVELS)}."
        )
    if compensation_levels is None:
        compensation_levels = EXPERIMENT_COMPENSATION_LEVELS[experiment]
    levels: dict[str, Sequence[float]] = dict(EXPERIMENT_ATTRIBUTE_LEVELS[experiment])
    levels[COMPENSATION] = tuple(compensation_levels)
    return build_tioli_design(levels, experiment=experiment)
