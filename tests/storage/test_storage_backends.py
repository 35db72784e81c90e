import pytest

from sensorlog.shared.errors import DatabaseWriteError, RowUpdateError, StorageDownloadError
from sensorlog.storage import (
    InMemoryMeasurementStore,
    LocalObjectStorage,
    MeasurementStore,
    ObjectStorage,
)
from sensorlog.storage.schema import render_schema


class TestLocalObjectStorage:
    def test_download(self, tmp_path):
        (tmp_path / "logs").mkdir()
        (tmp_path / "logs" / "a.log").write_bytes(b"measurements")
        storage = LocalObjectStorage(tmp_path)

        assert storage.download("logs/a.log") == b"measurements"
        assert storage.download(f"file://{tmp_path}/logs/a.log") == b"measurements"

    def test_missing_object(self, tmp_path):
        with pytest.raises(StorageDownloadError):
            LocalObjectStorage(tmp_path).download("absent.log")

    def test_path_outside_root(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        (tmp_path / "secret").write_bytes(b"x")
        with pytest.raises(StorageDownloadError, match="outside"):
            LocalObjectStorage(root).download("../secret")

    def test_empty_path(self, tmp_path):
        with pytest.raises(StorageDownloadError, match="empty"):
            LocalObjectStorage(tmp_path).download("")

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(LocalObjectStorage(tmp_path), ObjectStorage)


class TestInMemoryStore:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, MeasurementStore)

    def test_batch_is_all_or_nothing(self, store, log):
        rows = [{"log_id": log.id}, {"log_id": 404}]
        with pytest.raises(DatabaseWriteError):
            store.insert_measurements(rows)
        assert store.rows() == []

    def test_ids_follow_input_order(self, store, log):
        ids = store.insert_measurements([{"log_id": log.id, "n": i} for i in range(3)])
        assert [store.get_row(i)["n"] for i in ids] == [0, 1, 2]

    def test_mark_status_skips_embedded_rows(self, store, log):
        (row_id,) = store.insert_measurements([{"log_id": log.id, "embedding": None}])
        assert store.mark_status("measurements", row_id, "processing", "embedding")

        store.write_embedding("measurements", row_id, "embedding", [1.0], "completed")
        assert not store.mark_status("measurements", row_id, "failed", "embedding")
        assert store.get_row(row_id)["embedding_status"] == "completed"

    def test_write_embedding_unknown_row(self, store):
        with pytest.raises(RowUpdateError):
            store.write_embedding("measurements", 1, "embedding", [1.0], "completed")

    def test_unknown_table(self, store):
        with pytest.raises(KeyError):
            store.fetch_unembedded("nope", [1], "c", "e")

    def test_rows_are_copies(self, store, log):
        (row_id,) = store.insert_measurements([{"log_id": log.id, "values": [1.0]}])
        store.get_row(row_id)["values"].append(2.0)
        assert store.get_row(row_id)["values"] == [1.0]


def test_in_memory_store_starts_empty():
    store = InMemoryMeasurementStore()
    assert store.logs == {}
    assert store.rows() == []


class TestSchema:
    def test_dimensions_are_rendered(self):
        ddl = render_schema(summary_dims=16, embedding_dims=384)
        assert "readings_summary   vector(16)" in ddl
        assert "embedding          vector(384)" in ddl

    def test_cascade_and_index(self):
        ddl = render_schema()
        assert "REFERENCES logs (id) ON DELETE CASCADE" in ddl
        assert "USING hnsw (embedding vector_ip_ops)" in ddl
        assert "'pending', 'processing', 'completed', 'failed'" in ddl
