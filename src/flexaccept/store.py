"""On-disk persistence of model artifacts and replication statistics.

Layout under the output root:

    <root>/<experiment>/artifacts/replicate_0000.json    validated artifact
    <root>/<experiment>/artifacts/replicate_0001.json    replicate 1
    <root>/<experiment>/statistics/replicate_0001.parquet
    <root>/<experiment>/failures/replicate_0017.json
    <root>/<experiment>/statistics.parquet               merged statistics

Every file is written to a temporary file in the target directory and moved
into place with os.replace, so a key holds either the old or the new
content, never a partial file. Saving the same artifact twice produces a
byte-identical file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable

import pandas as pd

from flexaccept.core.exceptions import ArtifactNotFoundError, NotFoundError
from flexaccept.core.model import ModelArtifact
from flexaccept.core.result import ReplicateFailure
from flexaccept.algorithms.aggregation import STATISTIC_COLUMNS


def _replicate_stem(replicate_index: int) -> str:
    if replicate_index < 0:
        raise ValueError(f"replicate_index must be >= 0, got {replicate_index}")
    return f"replicate_{replicate_index:04d}"


def _index_from_stem(stem: str) -> int | None:
    prefix = "replicate_"
    if not stem.startswith(prefix):
        return None
    try:
        return int(stem[len(prefix):])
    except ValueError:
        return None


def _atomic_write(path: Path, write: Callable[[Path], None]) -> None:
    """Write through a temporary sibling file, then move it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    os.close(fd)
    tmp_path = Path(tmp)
    try:
        write(tmp_path)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def _write_json(path: Path, payload: Any) -> None:
    text = json.dumps(payload, sort_keys=True, indent=2) + "\n"
    _atomic_write(path, lambda tmp: tmp.write_text(text, encoding="utf-8"))


def _indices_in(directory: Path, suffix: str) -> list[int]:
    if not directory.is_dir():
        return []
    indices = (_index_from_stem(p.stem) for p in directory.glob(f"replicate_*{suffix}"))
    return sorted(i for i in indices if i is not None)


# =============================================================================
# MODEL ARTIFACT STORE
# =============================================================================


class ModelArtifactStore:
    """
    One frozen model artifact per (experiment, replicate_index).

    Index 0 is the validated artifact (point estimate), 1..R the replicates.
    Artifacts are JSON documents; floats are written in their shortest
    round-trip form so float64 coefficients survive exactly.

    Example:
        >>> store = ModelArtifactStore("output")
        >>> store.save("EV", 1, artifact)
        >>> store.load("EV", 1) == artifact
        True
    """

    def __init__(self, root: str | os.PathLike, logger: logging.Logger | None = None) -> None:
        self.root = Path(root)
        self.log = logger or logging.getLogger(__name__)

    def directory(self, experiment: str) -> Path:
        """Artifact directory of one experiment."""
        return self.root / experiment / "artifacts"

    def path(self, experiment: str, replicate_index: int) -> Path:
        """File holding the artifact of one key."""
        return self.directory(experiment) / f"{_replicate_stem(replicate_index)}.json"

    def save(self, experiment: str, replicate_index: int, artifact: ModelArtifact) -> Path:
        """
        Persist an artifact, replacing any previous one under the same key.

        Raises:
            ValueError: If the artifact's replicate index or experiment
                disagrees with the key
        """
        if artifact.replicate_index != replicate_index:
            raise ValueError(
                f"Artifact is replicate {artifact.replicate_index}, "
                f"cannot be saved as replicate {replicate_index}"
            )
        if artifact.experiment and artifact.experiment != experiment:
            raise ValueError(
                f"Artifact belongs to experiment '{artifact.experiment}', not '{experiment}'"
            )
        path = self.path(experiment, replicate_index)
        _write_json(path, artifact.to_dict())
        self.log.debug("Saved artifact %s", path)
        return path

    def load(self, experiment: str, replicate_index: int) -> ModelArtifact:
        """
        Load the artifact of one key.

        Raises:
            ArtifactNotFoundError: If no artifact was saved under the key
        """
        path = self.path(experiment, replicate_index)
        if not path.is_file():
            raise ArtifactNotFoundError(
                f"No artifact for experiment '{experiment}' replicate {replicate_index} "
                f"at {path}; re-run the draw stage for this replicate"
            )
        with open(path, encoding="utf-8") as f:
            return ModelArtifact.from_dict(json.load(f))

    def exists(self, experiment: str, replicate_index: int) -> bool:
        """True if an artifact is stored under the key."""
        return self.path(experiment, replicate_index).is_file()

    def available_indices(self, experiment: str) -> list[int]:
        """Sorted replicate indices with a stored artifact (including 0)."""
        return _indices_in(self.directory(experiment), ".json")

    def missing_indices(self, experiment: str, n_replicates: int) -> list[int]:
        """Replicates 1..n_replicates without a stored artifact."""
        available = set(self.available_indices(experiment))
        return [r for r in range(1, n_replicates + 1) if r not in available]

    def __repr__(self) -> str:
        return f"ModelArtifactStore({str(self.root)!r})"


# =============================================================================
# REPLICATION STATISTIC SINK
# =============================================================================


class ReplicationStatisticSink:
    """
    Append-only table of per-replicate statistics.

    Each replicate's rows go to their own parquet file, so replicates can be
    written in any order and re-running a replicate replaces its rows.
    `collect` merges the files into one table sorted by replicate index.
    """

    def __init__(self, root: str | os.PathLike, logger: logging.Logger | None = None) -> None:
        self.root = Path(root)
        self.log = logger or logging.getLogger(__name__)

    def statistics_dir(self, experiment: str) -> Path:
        return self.root / experiment / "statistics"

    def failures_dir(self, experiment: str) -> Path:
        return self.root / experiment / "failures"

    def statistics_path(self, experiment: str, replicate_index: int) -> Path:
        return self.statistics_dir(experiment) / f"{_replicate_stem(replicate_index)}.parquet"

    def failure_path(self, experiment: str, replicate_index: int) -> Path:
        return self.failures_dir(experiment) / f"{_replicate_stem(replicate_index)}.json"

    def write(
        self,
        experiment: str,
        replicate_index: int,
        rows: pd.DataFrame | Iterable[dict[str, Any]],
    ) -> Path:
        """
        Store the statistics of one replicate.

        Any failure previously recorded for the replicate is cleared.

        Args:
            experiment: Experiment label
            replicate_index: Replicate the rows belong to
            rows: Records with statistic_name, value and optionally std_error

        Returns:
            Path of the written file
        """
        frame = pd.DataFrame(rows if isinstance(rows, pd.DataFrame) else list(rows))
        if "statistic_name" not in frame.columns or "value" not in frame.columns:
            raise ValueError("Statistic rows need 'statistic_name' and 'value' columns")
        if "std_error" not in frame.columns:
            frame["std_error"] = float("nan")
        frame["replicate_index"] = replicate_index
        frame = frame.loc[:, list(STATISTIC_COLUMNS)].astype(
            {"replicate_index": "int64", "statistic_name": "string",
             "value": "float64", "std_error": "float64"}
        )

        path = self.statistics_path(experiment, replicate_index)
        _atomic_write(path, lambda tmp: frame.to_parquet(tmp, index=False))
        failure = self.failure_path(experiment, replicate_index)
        if failure.exists():
            failure.unlink()
        return path

    def write_failure(self, experiment: str, failure: ReplicateFailure) -> Path:
        """Record a dropped replicate and remove any statistics it had before."""
        path = self.failure_path(experiment, failure.replicate_index)
        _write_json(path, failure.to_dict())
        stale = self.statistics_path(experiment, failure.replicate_index)
        if stale.exists():
            stale.unlink()
            self.log.info(
                "Removed earlier statistics of replicate %d of %s",
                failure.replicate_index, experiment,
            )
        return path

    def has(self, experiment: str, replicate_index: int) -> bool:
        """True if statistics of the replicate are stored."""
        return self.statistics_path(experiment, replicate_index).is_file()

    def completed_indices(self, experiment: str) -> list[int]:
        """Replicates with stored statistics."""
        return _indices_in(self.statistics_dir(experiment), ".parquet")

    def failures(self, experiment: str) -> list[ReplicateFailure]:
        """Recorded failures, by replicate index."""
        out = []
        for r in _indices_in(self.failures_dir(experiment), ".json"):
            with open(self.failure_path(experiment, r), encoding="utf-8") as f:
                data = json.load(f)
            out.append(ReplicateFailure(**data))
        return out

    def collect(self, experiment: str, write: bool = True) -> pd.DataFrame:
        """
        Merge all per-replicate files of an experiment.

        Args:
            experiment: Experiment label
            write: Also write the merged table to statistics.parquet

        Returns:
            DataFrame with columns replicate_index, statistic_name, value,
            std_error

        Raises:
            NotFoundError: If no replicate statistics exist
        """
        indices = self.completed_indices(experiment)
        if not indices:
            raise NotFoundError(
                f"No replicate statistics for experiment '{experiment}' under "
                f"{self.statistics_dir(experiment)}; run the replicate stage first"
            )
        frames = [pd.read_parquet(self.statistics_path(experiment, r)) for r in indices]
        table = pd.concat(frames, ignore_index=True)
        if write:
            path = self.root / experiment / "statistics.parquet"
            _atomic_write(path, lambda tmp: table.to_parquet(tmp, index=False))
            self.log.info("Merged %d replicate files into %s", len(indices), path)
        return table

    def write_table(self, experiment: str, name: str, frame: pd.DataFrame) -> tuple[Path, Path]:
        """Write a report table as <name>.parquet and <name>.csv."""
        base = self.root / experiment
        parquet_path = base / f"{name}.parquet"
        csv_path = base / f"{name}.csv"
        _atomic_write(parquet_path, lambda tmp: frame.to_parquet(tmp, index=False))
        _atomic_write(csv_path, lambda tmp: frame.to_csv(tmp, index=False))
        return parquet_path, csv_path

    def __repr__(self) -> str:
        return f"ReplicationStatisticSink({str(self.root)!r})"
