#!/usr/bin/env python3
"""
Krinsky-Robb replication driver.

Runs the simulation-based inference of the flexibility-contract paper for
one or both experiments:
1. Load the fitted mixed-logit model, choice panel and covariates
2. Freeze the validated artifact and R replicate artifacts
3. Propagate every replicate through acceptance probabilities, average
   partial effects, conditional WTA and the auxiliary regressions
4. Aggregate into percentile confidence intervals and bootstrap p-values

Usage:
    python replication/run_all.py --inputs data/estimates --output output
    python replication/run_all.py --experiment EV --replicates 100 --jobs 4
    python replication/run_all.py --stage draw          # stop after stage 1
    python replication/run_all.py --stage replicate     # resume from the store

Inputs are expected under <inputs>/<experiment>/ (see flexaccept.io).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from flexaccept import (
    KrinskyRobbPipeline,
    PipelineConfig,
    default_config,
    generate_scenario_design,
    load_experiment_inputs,
)
from flexaccept.core.exceptions import FlexAcceptError
from flexaccept.core.types import EXPERIMENTS
from flexaccept.pipeline import STAGES

log = logging.getLogger("replication")


def build_config(args: argparse.Namespace, experiment: str) -> PipelineConfig:
    """Experiment defaults, then the config file, then command-line flags."""
    if args.config:
        with open(args.config, encoding="utf-8") as f:
            data = json.load(f)
        data["experiment"] = experiment
        config = PipelineConfig.from_dict(data)
    else:
        config = default_config(experiment)

    overrides = {
        "n_replicates": args.replicates,
        "seed": args.seed,
        "n_draws": args.draws,
        "burn_in": args.burn_in,
        "n_jobs": args.jobs,
        "output_dir": args.output,
    }
    return config.with_overrides(**{k: v for k, v in overrides.items() if v is not None})


def run_experiment(args: argparse.Namespace, experiment: str) -> None:
    config = build_config(args, experiment)
    log.info("Running %s with %s", experiment, json.dumps(config.to_dict()))

    inputs = load_experiment_inputs(args.inputs, experiment)
    design = generate_scenario_design(experiment)
    pipeline = KrinskyRobbPipeline(config)

    stages = STAGES if args.stage == "all" else (args.stage,)
    result = pipeline.run(inputs, design, stages=stages, overwrite=args.overwrite)

    print(result.summary())
    summary_path = Path(config.output_dir) / experiment / "run_summary.json"
    summary_path.parent.mkdir(parents=True, exist_ok=True)
    with open(summary_path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2, sort_keys=True, default=str)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Krinsky-Robb replication of flexibility-contract acceptance"
    )
    parser.add_argument(
        "--experiment",
        choices=list(EXPERIMENTS) + ["both"],
        default="both",
        help="Experiment to run (default: both)",
    )
    parser.add_argument("--replicates", type=int, help="Number of replicates R")
    parser.add_argument("--seed", type=int, help="Seed of the replicate draws")
    parser.add_argument("--draws", type=int, help="Halton draws per integration")
    parser.add_argument("--burn-in", type=int, help="Leading Halton points discarded")
    parser.add_argument("--jobs", type=int, help="Worker processes (-1 = all cores)")
    parser.add_argument(
        "--stage",
        choices=list(STAGES) + ["all"],
        default="all",
        help="Run a single stage (default: all)",
    )
    parser.add_argument(
        "--inputs",
        type=Path,
        default=Path("inputs"),
        help="Directory with one input folder per experiment",
    )
    parser.add_argument("--output", type=Path, help="Output directory")
    parser.add_argument("--config", type=Path, help="JSON file with PipelineConfig fields")
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Recompute artifacts and statistics that already exist",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    experiments = EXPERIMENTS if args.experiment == "both" else (args.experiment,)
    for experiment in experiments:
        try:
            run_experiment(args, experiment)
        except FlexAcceptError as exc:
            log.error("%s failed: %s: %s", experiment, type(exc).__name__, exc)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
