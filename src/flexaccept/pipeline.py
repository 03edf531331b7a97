"""Orchestration of the Krinsky-Robb replication for one experiment.

Stages:
    1. draw       Freeze the validated artifact (replicate 0) and R replicate
                  artifacts b_r ~ N(b, V) into the artifact store
    2. replicate  For every stored artifact, in parallel: predict acceptance
                  probabilities, compute average partial effects, derive
                  conditional coefficients and WTA, run the auxiliary
                  regressions, and emit named statistics
    3. aggregate  Merge the per-replicate statistics and summarize each one
                  by its mean, percentile interval and bootstrap p-value

Each stage reads only what the previous stage persisted, so a run can stop
after any stage and resume later, for any subset of replicates.

Statistic names:
    ape:<attribute>                      average partial effect
    p_accept:<scenario_id>               contract acceptance probability
    wta_mean:<attribute>                 sample mean of respondent WTA
    <model>:wta_<attribute>:<term>       auxiliary regression coefficient
    log_likelihood                       simulated log-likelihood of the panel
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from flexaccept.algorithms.aggregation import aggregate_statistics
from flexaccept.algorithms.conditional import (
    compute_wta_table,
    derive_conditional_parameters,
    wta_column,
)
from flexaccept.algorithms.prediction import (
    compute_average_partial_effects,
    predict_probabilities,
    probability_column,
    simulate_choice_probabilities,
)
from flexaccept.algorithms.regression import (
    ResolvedCovariates,
    regress_wta,
    resolve_covariates,
)
from flexaccept.algorithms.replicates import draw_replicates, validated_artifact
from flexaccept.core.config import PipelineConfig
from flexaccept.core.exceptions import (
    ArtifactNotFoundError,
    DataQualityWarning,
    DataValidationError,
    NotFoundError,
    NumericalError,
    SpecificationMismatchError,
)
from flexaccept.core.model import ModelArtifact, ModelSpecification, PointEstimate
from flexaccept.core.panel import SCENARIO_COLUMN, ChoicePanel, ScenarioDesign
from flexaccept.core.result import ReplicateFailure, ReplicationRunResult
from flexaccept.core.types import VALIDATED_INDEX
from flexaccept.io import ExperimentInputs
from flexaccept.store import ModelArtifactStore, ReplicationStatisticSink

STAGES: tuple[str, ...] = ("draw", "replicate", "aggregate")

ACCEPTANCE_PREFIX = "p_accept"
LOG_LIKELIHOOD = "log_likelihood"


def acceptance_statistic(scenario_id: Any) -> str:
    """Statistic name of the contract acceptance probability of a scenario."""
    return f"{ACCEPTANCE_PREFIX}:{scenario_id}"


def regression_statistic(label: str, attribute: str, term: str) -> str:
    """Statistic name of one auxiliary regression coefficient."""
    return f"{label}:{wta_column(attribute)}:{term}"


# =============================================================================
# PER-REPLICATE COMPUTATION
# =============================================================================


@dataclass(frozen=True)
class ReplicateOutcome:
    """Statistics of one replicate, or the reason it was dropped."""

    replicate_index: int
    rows: tuple[dict[str, Any], ...] = ()
    failure: ReplicateFailure | None = None


def compute_replicate_statistics(
    artifact: ModelArtifact,
    design: ScenarioDesign,
    panel: ChoicePanel,
    covariates: Sequence[ResolvedCovariates],
    config: PipelineConfig,
) -> list[dict[str, Any]]:
    """
    Every named statistic of one artifact.

    Args:
        artifact: Frozen model of the replicate
        design: TIOLI scenario design
        panel: Observed choices
        covariates: Covariate specifications resolved at startup
        config: Run configuration

    Returns:
        List of {"statistic_name", "value", "std_error"} records

    Raises:
        NumericalError: If a numerical sub-step fails (drops the replicate)
    """
    rows: list[dict[str, Any]] = []

    def emit(name: str, value: float, std_error: float = float("nan")) -> None:
        rows.append({"statistic_name": name, "value": float(value), "std_error": float(std_error)})

    probs = simulate_choice_probabilities(artifact, design, config.n_draws, config.burn_in)
    contract = design.contract_mask
    for scenario_id, p in zip(design.data.loc[contract, SCENARIO_COLUMN], probs[contract]):
        emit(acceptance_statistic(scenario_id), p)

    effects = compute_average_partial_effects(
        artifact, design, config.partial_effects, config.n_draws, config.burn_in
    )
    for name, value in effects.items():
        emit(name, value)

    conditional = derive_conditional_parameters(
        artifact, panel, config.n_draws, config.burn_in
    )
    emit(LOG_LIKELIHOOD, conditional.log_likelihood)

    if not config.wta_attributes:
        return rows

    wta = compute_wta_table(
        conditional, config.wta_attributes, config.cost_attribute, config.wta_epsilon
    )
    for attr in config.wta_attributes:
        values = wta[wta_column(attr)].to_numpy(dtype=np.float64)
        finite = values[np.isfinite(values)]
        emit(f"wta_mean:{attr}", finite.mean() if finite.size else float("nan"))

    for resolved in covariates:
        for attr in config.wta_attributes:
            result = regress_wta(wta, resolved, wta_column(attr))
            for term, b, se in zip(result.terms, result.coefficients, result.std_errors):
                emit(regression_statistic(resolved.label, attr, term), b, se)
    return rows


def run_replicate_task(
    replicate_index: int,
    store: ModelArtifactStore,
    design: ScenarioDesign,
    panel: ChoicePanel,
    covariates: Sequence[ResolvedCovariates],
    config: PipelineConfig,
) -> ReplicateOutcome:
    """
    Load one artifact and compute its statistics on private table copies.

    NumericalError and ArtifactNotFoundError are recovered into a
    ReplicateFailure; any other exception propagates and stops the run.
    """
    try:
        artifact = store.load(config.experiment, replicate_index)
        rows = compute_replicate_statistics(
            artifact, design.copy(), panel.copy(), covariates, config
        )
    except (NumericalError, ArtifactNotFoundError) as exc:
        return ReplicateOutcome(
            replicate_index, failure=ReplicateFailure.from_exception(replicate_index, exc)
        )
    return ReplicateOutcome(replicate_index, rows=tuple(rows))


# =============================================================================
# PIPELINE
# =============================================================================


class KrinskyRobbPipeline:
    """
    Krinsky-Robb uncertainty propagation for one experiment.

    Attributes:
        config: Immutable run configuration
        store: Artifact store (default: under config.output_dir)
        sink: Statistics sink (default: under config.output_dir)
        log: Logger used for progress messages

    Example:
        >>> config = default_config("EV", n_replicates=1000, seed=12345)
        >>> pipeline = KrinskyRobbPipeline(config)
        >>> inputs = load_experiment_inputs("inputs", "EV")
        >>> result = pipeline.run(inputs)
        >>> print(result.summary())
    """

    def __init__(
        self,
        config: PipelineConfig,
        store: ModelArtifactStore | None = None,
        sink: ReplicationStatisticSink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.store = store or ModelArtifactStore(config.output_dir, logger=logger)
        self.sink = sink or ReplicationStatisticSink(config.output_dir, logger=logger)
        self.log = logger or logging.getLogger(__name__)

    @property
    def experiment(self) -> str:
        return self.config.experiment

    # -------------------------------------------------------------------------
    # Startup validation
    # -------------------------------------------------------------------------

    def validate_inputs(
        self,
        specification: ModelSpecification,
        design: ScenarioDesign,
        panel: ChoicePanel,
        covariates: pd.DataFrame,
    ) -> tuple[ResolvedCovariates, ...]:
        """
        Check all shared inputs once, before any replicate runs.

        Returns:
            The covariate specifications resolved against the covariate table

        Raises:
            SpecificationMismatchError: If the design, panel or configuration
                refers to attributes the model does not have
            DataValidationError: If the covariate table is unusable or covers
                none of the panel respondents
        """
        config = self.config
        attributes = set(specification.attributes)
        design.attribute_matrix(specification.attributes)
        panel.attribute_matrix(specification.attributes)

        wanted = list(config.wta_attributes) + [e.attribute for e in config.partial_effects]
        if config.wta_attributes:
            wanted.append(config.cost_attribute)
        unknown = sorted(set(wanted) - attributes)
        if unknown:
            raise SpecificationMismatchError(
                f"Configuration refers to attributes {unknown} that are not in the "
                f"model specification {list(specification.attributes)}"
            )
        resolved = tuple(resolve_covariates(m, covariates) for m in config.regression_models)
        respondents = pd.Index(panel.respondent_ids)
        for r in resolved:
            covered = int(respondents.isin(r.design.index).sum())
            if covered == 0:
                raise DataValidationError(
                    f"Covariates of model '{r.label}' cover none of the "
                    f"{len(respondents)} panel respondents (check respondent_id values and dtype)"
                )
            if covered < len(respondents):
                warnings.warn(
                    f"Covariates of model '{r.label}' cover {covered} of "
                    f"{len(respondents)} panel respondents; the rest are left out of its regressions",
                    DataQualityWarning,
                    stacklevel=2,
                )
        self.log.info(
            "Validated inputs of %s: %d scenarios, %d respondents, %d regression model(s)",
            self.experiment, design.n_scenarios, panel.n_respondents, len(resolved),
        )
        return resolved

    # -------------------------------------------------------------------------
    # Stage 1: draw
    # -------------------------------------------------------------------------

    def draw(
        self,
        point_estimate: PointEstimate,
        specification: ModelSpecification,
        panel: ChoicePanel | None = None,
        overwrite: bool = False,
    ) -> list[int]:
        """
        Freeze and store the validated artifact and the R replicates.

        The full random stream is regenerated every time, so replicate r is
        identical whether it is written now or was written by an earlier,
        interrupted run. Existing artifacts are kept unless `overwrite`.

        Args:
            point_estimate: Fitted mean vector and covariance
            specification: Utility specification
            panel: If given, the simulated log-likelihood of the validated
                artifact is stored with it
            overwrite: Rewrite artifacts that already exist

        Returns:
            Replicate indices that were written

        Raises:
            NumericalError: If V cannot be factored (fatal: shared input)
        """
        config = self.config
        written: list[int] = []

        if overwrite or not self.store.exists(self.experiment, VALIDATED_INDEX):
            validated = validated_artifact(
                point_estimate,
                specification,
                experiment=self.experiment,
                panel=panel,
                n_draws=config.n_draws,
                burn_in=config.burn_in,
            )
            self.store.save(self.experiment, VALIDATED_INDEX, validated)
            written.append(VALIDATED_INDEX)

        replicates = draw_replicates(
            point_estimate,
            config.n_replicates,
            seed=config.seed,
            specification=specification,
            experiment=self.experiment,
        )
        for artifact in replicates:
            r = artifact.replicate_index
            if overwrite or not self.store.exists(self.experiment, r):
                self.store.save(self.experiment, r, artifact)
                written.append(r)

        self.log.info(
            "Draw stage of %s: wrote %d artifact(s), %d already present",
            self.experiment, len(written), config.n_replicates + 1 - len(written),
        )
        return written

    # -------------------------------------------------------------------------
    # Stage 2: replicate
    # -------------------------------------------------------------------------

    def pending_indices(self, overwrite: bool = False) -> list[int]:
        """Validated artifact and replicates whose statistics are not stored yet."""
        indices = range(VALIDATED_INDEX, self.config.n_replicates + 1)
        if overwrite:
            return list(indices)
        done = set(self.sink.completed_indices(self.experiment))
        return [r for r in indices if r not in done]

    def replicate(
        self,
        design: ScenarioDesign,
        panel: ChoicePanel,
        covariates: Sequence[ResolvedCovariates],
        indices: Iterable[int] | None = None,
        overwrite: bool = False,
    ) -> list[ReplicateFailure]:
        """
        Compute and store the statistics of each replicate in a worker pool.

        Args:
            design: TIOLI scenario design
            panel: Observed choices
            covariates: Covariate specifications from validate_inputs
            indices: Replicates to process (default: all pending, including
                the validated artifact)
            overwrite: Recompute replicates that already have statistics

        Returns:
            Failures of this call, one per dropped replicate
        """
        todo = list(indices) if indices is not None else self.pending_indices(overwrite)
        if not todo:
            self.log.info("Replicate stage of %s: nothing to do", self.experiment)
            return []

        self.log.info(
            "Replicate stage of %s: %d task(s) on n_jobs=%d",
            self.experiment, len(todo), self.config.n_jobs,
        )
        start_time = time.perf_counter()
        outcomes = Parallel(n_jobs=self.config.n_jobs, return_as="generator")(
            delayed(run_replicate_task)(r, self.store, design, panel, covariates, self.config)
            for r in todo
        )

        failures: list[ReplicateFailure] = []
        for done, outcome in enumerate(outcomes, start=1):
            if outcome.failure is not None:
                failure = outcome.failure
                self.log.warning(
                    "Replicate %d of %s dropped: %s: %s",
                    failure.replicate_index, self.experiment,
                    failure.error_type, failure.message,
                )
                self.sink.write_failure(self.experiment, failure)
                failures.append(failure)
            else:
                self.sink.write(self.experiment, outcome.replicate_index, outcome.rows)
            if done % 100 == 0 or done == len(todo):
                self.log.info("  %d/%d replicate task(s) finished", done, len(todo))

        self.log.info(
            "Replicate stage of %s finished in %.1f s (%d failure(s))",
            self.experiment, time.perf_counter() - start_time, len(failures),
        )
        return failures

    # -------------------------------------------------------------------------
    # Stage 3: aggregate
    # -------------------------------------------------------------------------

    def aggregate(self) -> pd.DataFrame:
        """
        Aggregate all stored replicate statistics and write the report table.

        Returns:
            One row per statistic (see AGGREGATE_COLUMNS)

        Raises:
            NotFoundError: If no replicate statistics are stored
            InsufficientReplicatesError: If a statistic has no usable value
        """
        table = self.sink.collect(self.experiment)
        # Files of an earlier run with more replicates are ignored
        table = table[table["replicate_index"] <= self.config.n_replicates]
        aggregates = aggregate_statistics(
            table,
            n_intended=self.config.n_replicates,
            confidence=self.config.confidence,
            experiment=self.experiment,
        )
        self.sink.write_table(self.experiment, "aggregates", aggregates)
        failures = self.sink.failures(self.experiment)
        if failures:
            self.sink.write_table(
                self.experiment, "failures", pd.DataFrame([f.to_dict() for f in failures])
            )
        return aggregates

    def predictions(
        self, design: ScenarioDesign, aggregates: pd.DataFrame | None = None
    ) -> ScenarioDesign:
        """
        Design with the validated prediction and, if available, its interval.

        Adds p_validated and, from the aggregates, p_ci_lower / p_ci_upper on
        contract rows (NaN on opt-out rows). The table is also written to
        predictions.parquet / predictions.csv.

        Raises:
            ArtifactNotFoundError: If the validated artifact is not stored
        """
        artifact = self.store.load(self.experiment, VALIDATED_INDEX)
        out = predict_probabilities(
            artifact, design, self.config.n_draws, self.config.burn_in,
            column=probability_column(VALIDATED_INDEX),
        )
        if aggregates is not None and len(aggregates):
            contract = out.contract_mask
            names = out.data[SCENARIO_COLUMN].map(acceptance_statistic)
            bounds = aggregates.set_index("statistic_name")
            for column, source in (("p_ci_lower", "ci_lower"), ("p_ci_upper", "ci_upper")):
                mapped = names.map(bounds[source]).to_numpy(dtype=np.float64)
                values = np.where(contract, mapped, np.nan)
                out = out.with_column(column, values)
        self.sink.write_table(self.experiment, "predictions", out.data)
        return out

    def validated_statistics(self) -> dict[str, float]:
        """Statistics of the validated artifact, if computed."""
        if not self.sink.has(self.experiment, VALIDATED_INDEX):
            return {}
        frame = pd.read_parquet(self.sink.statistics_path(self.experiment, VALIDATED_INDEX))
        return dict(zip(frame["statistic_name"].astype(str), frame["value"].astype(float)))

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    def run(
        self,
        inputs: ExperimentInputs,
        design: ScenarioDesign,
        stages: Sequence[str] = STAGES,
        overwrite: bool = False,
    ) -> ReplicationRunResult:
        """
        Run the requested stages in order.

        Shared inputs are validated before anything is written; failures
        there are fatal. Per-replicate numerical failures only drop the
        affected replicate.

        Args:
            inputs: Point estimate, specification, panel and covariates
            design: TIOLI scenario design of the experiment
            stages: Subset of ("draw", "replicate", "aggregate")
            overwrite: Recompute artifacts and statistics that already exist

        Returns:
            ReplicationRunResult (aggregates are empty unless "aggregate" ran)
        """
        unknown = [s for s in stages if s not in STAGES]
        if unknown:
            raise ValueError(f"Unknown stages {unknown}. Use a subset of {STAGES}.")
        start_time = time.perf_counter()

        inputs.point_estimate.check_against(inputs.specification)
        covariates = self.validate_inputs(
            inputs.specification, design, inputs.panel, inputs.covariates
        )

        if "draw" in stages:
            self.draw(
                inputs.point_estimate, inputs.specification,
                panel=inputs.panel, overwrite=overwrite,
            )
        if "replicate" in stages:
            self.replicate(design, inputs.panel, covariates, overwrite=overwrite)

        aggregates = pd.DataFrame()
        predictions = None
        if "aggregate" in stages:
            aggregates = self.aggregate()
            try:
                predictions = self.predictions(design, aggregates)
            except NotFoundError as exc:
                self.log.warning("No validated predictions for %s: %s", self.experiment, exc)

        completed = [
            r for r in self.sink.completed_indices(self.experiment) if r != VALIDATED_INDEX
        ]
        result = ReplicationRunResult(
            experiment=self.experiment,
            n_intended=self.config.n_replicates,
            n_completed=len([r for r in completed if r <= self.config.n_replicates]),
            aggregates=aggregates,
            failures=tuple(self.sink.failures(self.experiment)),
            predictions=predictions,
            computation_time_ms=(time.perf_counter() - start_time) * 1000,
            validated_statistics=self.validated_statistics(),
        )
        self.log.info(
            "%s: %d of %d replicates contributed",
            self.experiment, result.n_completed, result.n_intended,
        )
        return result
