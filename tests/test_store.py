"""Tests for artifact and statistic persistence."""

import json

import numpy as np
import pandas as pd
import pytest

from flexaccept import ModelArtifact, ModelArtifactStore, ReplicationStatisticSink
from flexaccept.core.exceptions import ArtifactNotFoundError, NotFoundError
from flexaccept.core.result import ReplicateFailure


def _artifact(spec, coefficients, index=1):
    return ModelArtifact(
        specification=spec,
        coefficients=np.asarray(coefficients, dtype=float),
        experiment="EV",
        replicate_index=index,
    )


class TestModelArtifactStore:
    """Keyed, idempotent artifact persistence."""

    def test_save_load(self, tmp_path, fixed_spec):
        """A saved artifact loads back unchanged."""
        store = ModelArtifactStore(tmp_path)
        artifact = _artifact(fixed_spec, [0.1 + 0.2, -1 / 3])
        store.save("EV", 1, artifact)
        assert store.load("EV", 1) == artifact

    def test_idempotent_save(self, tmp_path, fixed_spec):
        """Saving the same artifact twice leaves a byte-identical file."""
        store = ModelArtifactStore(tmp_path)
        artifact = _artifact(fixed_spec, [1.0, -0.5])
        path = store.save("EV", 1, artifact)
        first = path.read_bytes()
        store.save("EV", 1, artifact)
        assert path.read_bytes() == first
        assert store.load("EV", 1) == artifact

    def test_overwrite(self, tmp_path, fixed_spec):
        """Saving different content replaces the artifact without duplication."""
        store = ModelArtifactStore(tmp_path)
        store.save("EV", 1, _artifact(fixed_spec, [1.0, -0.5]))
        replacement = _artifact(fixed_spec, [2.0, -1.0])
        store.save("EV", 1, replacement)
        assert store.load("EV", 1) == replacement
        assert store.available_indices("EV") == [1]
        assert not list(store.directory("EV").glob("*.tmp"))

    def test_missing_key(self, tmp_path):
        """Loading a missing key never returns a default."""
        store = ModelArtifactStore(tmp_path)
        with pytest.raises(ArtifactNotFoundError):
            store.load("HP", 7)

    def test_experiments_are_separate(self, tmp_path, fixed_spec):
        """The same index under another experiment is a different key."""
        store = ModelArtifactStore(tmp_path)
        store.save("EV", 1, _artifact(fixed_spec, [1.0, -0.5]))
        assert not store.exists("HP", 1)

    def test_index_mismatch(self, tmp_path, fixed_spec):
        """An artifact can only be saved under its own replicate index."""
        store = ModelArtifactStore(tmp_path)
        with pytest.raises(ValueError):
            store.save("EV", 2, _artifact(fixed_spec, [1.0, -0.5], index=1))

    def test_missing_indices(self, tmp_path, fixed_spec):
        """missing_indices lists replicates without an artifact."""
        store = ModelArtifactStore(tmp_path)
        for r in (0, 1, 3):
            store.save("EV", r, _artifact(fixed_spec, [1.0, -0.5], index=r))
        assert store.available_indices("EV") == [0, 1, 3]
        assert store.missing_indices("EV", 4) == [2, 4]

    def test_json_format(self, tmp_path, fixed_spec):
        """Artifacts are plain JSON documents."""
        store = ModelArtifactStore(tmp_path)
        path = store.save("EV", 1, _artifact(fixed_spec, [1.0, -0.5]))
        data = json.loads(path.read_text())
        assert data["coefficients"] == [1.0, -0.5]
        assert data["specification"]["attributes"] == ["contract", "x"]


class TestReplicationStatisticSink:
    """One statistics file per replicate, merged on demand."""

    def test_write_collect(self, tmp_path):
        """Rows of all replicates are merged in replicate order."""
        sink = ReplicationStatisticSink(tmp_path)
        sink.write("EV", 2, [{"statistic_name": "ape:x", "value": 0.2}])
        sink.write("EV", 1, [{"statistic_name": "ape:x", "value": 0.1}])
        table = sink.collect("EV")
        assert table["replicate_index"].tolist() == [1, 2]
        assert table["value"].tolist() == [0.1, 0.2]
        assert (tmp_path / "EV" / "statistics.parquet").is_file()

    def test_rewrite_replaces(self, tmp_path):
        """Re-running a replicate replaces its rows."""
        sink = ReplicationStatisticSink(tmp_path)
        sink.write("EV", 1, [{"statistic_name": "ape:x", "value": 0.1}])
        sink.write("EV", 1, [{"statistic_name": "ape:x", "value": 0.3}])
        table = sink.collect("EV", write=False)
        assert len(table) == 1
        assert table["value"].iloc[0] == pytest.approx(0.3)

    def test_failures(self, tmp_path):
        """Failures are recorded and cleared when the replicate succeeds."""
        sink = ReplicationStatisticSink(tmp_path)
        sink.write_failure("EV", ReplicateFailure(4, "NumericalError", "singular"))
        assert sink.failures("EV") == [ReplicateFailure(4, "NumericalError", "singular")]
        sink.write("EV", 4, [{"statistic_name": "ape:x", "value": 1.0}])
        assert sink.failures("EV") == []

    def test_collect_empty(self, tmp_path):
        """Collecting before any replicate ran is a missing-table error."""
        with pytest.raises(NotFoundError):
            ReplicationStatisticSink(tmp_path).collect("EV")

    def test_write_table(self, tmp_path):
        """Report tables are written as parquet and CSV."""
        sink = ReplicationStatisticSink(tmp_path)
        frame = pd.DataFrame({"a": [1, 2]})
        parquet_path, csv_path = sink.write_table("EV", "report", frame)
        pd.testing.assert_frame_equal(pd.read_parquet(parquet_path), frame)
        pd.testing.assert_frame_equal(pd.read_csv(csv_path), frame)

    def test_failure_removes_earlier_statistics(self, tmp_path):
        """A replicate that fails on a re-run keeps no statistics from before."""
        sink = ReplicationStatisticSink(tmp_path)
        sink.write("EV", 3, [{"statistic_name": "ape:x", "value": 1.0}])
        sink.write("EV", 4, [{"statistic_name": "ape:x", "value": 2.0}])
        sink.write_failure("EV", ReplicateFailure(3, "RegressionError", "rank"))
        assert not sink.has("EV", 3)
        assert sink.completed_indices("EV") == [4]
        assert sink.collect("EV", write=False)["replicate_index"].tolist() == [4]
