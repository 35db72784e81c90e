import json

import psycopg
import pytest

from sensorlog.ingestion.coordinator import IngestionCoordinator
from sensorlog.ingestion.embed_worker import EmbeddingWorker
from sensorlog.ingestion.sections import EMBEDDING_COMPLETED
from sensorlog.ingestion.triggers import (
    STATUS_BAD_REQUEST,
    STATUS_NO_CONTENT,
    STATUS_SERVER_ERROR,
    EmbedRequest,
    EmbedTrigger,
    InlineDispatcher,
    handle_embed_request,
    handle_process_request,
    handle_upload_event,
    plan_embed_requests,
)
from sensorlog.shared.config import Config
from sensorlog.storage import InMemoryMeasurementStore

ENTRY = {
    "description": "Power measurements for PSU1",
    "measurements": {"values": [1.0, 2.0], "units": "Watts"},
    "metadata": {"sensor name": "PSU1 Input"},
}


def json_log(count):
    return json.dumps([ENTRY] * count).encode("utf-8")


class TestPlanEmbedRequests:
    def test_ceil_split(self):
        requests = plan_embed_requests(
            list(range(120)), "measurements", "embedding_text", "embedding", 50
        )
        assert [len(r.ids) for r in requests] == [50, 50, 20]
        assert requests[2].ids == list(range(100, 120))

    def test_no_ids(self):
        assert plan_embed_requests([], "t", "c", "e", 50) == []

    def test_deterministic(self):
        args = (list(range(7)), "t", "c", "e", 3)
        assert plan_embed_requests(*args) == plan_embed_requests(*args)

    def test_bad_batch_size(self):
        with pytest.raises(ValueError):
            plan_embed_requests([1], "t", "c", "e", 0)


class TestEmbedRequestPayload:
    def test_payload_round_trip(self):
        request = EmbedRequest([1, 2], "measurements", "embedding_text", "embedding")
        payload = request.to_payload()
        assert payload == {
            "ids": [1, 2],
            "table": "measurements",
            "contentColumn": "embedding_text",
            "embeddingColumn": "embedding",
        }
        assert EmbedRequest.from_payload(payload) == request

    def test_ids_must_be_a_list(self):
        with pytest.raises(ValueError, match="ids"):
            EmbedRequest.from_payload({"ids": 5, "table": "t"})

    def test_missing_columns(self):
        with pytest.raises(ValueError, match="contentColumn"):
            EmbedRequest.from_payload({"ids": [], "table": "t", "embeddingColumn": "e"})


class FailingDispatcher:
    def dispatch(self, request):
        raise ConnectionError("queue unavailable")


def test_embed_trigger_end_to_end(store, log, provider, config):
    worker = EmbeddingWorker(store, provider, config=config)
    dispatcher = InlineDispatcher(worker)
    trigger = EmbedTrigger(dispatcher, config=config)
    coordinator = IngestionCoordinator(
        store, config=config, on_batch_committed=trigger.on_batch_committed
    )

    coordinator.ingest(json_log(60), log.id)

    assert len(dispatcher.results) == 2
    assert all(r["embedding_status"] == EMBEDDING_COMPLETED for r in store.rows())


def test_embed_trigger_splits_by_its_own_batch_size(store, log, provider):
    config = Config(embed_trigger={"batch_size": 4})
    dispatcher = InlineDispatcher(EmbeddingWorker(store, provider, config=config))
    trigger = EmbedTrigger(dispatcher, config=config)

    ids = IngestionCoordinator(store, config=config).ingest_file(json_log(10), log.id).row_ids
    requests = trigger.on_batch_committed(ids)

    assert [len(r.ids) for r in requests] == [4, 4, 2]
    assert requests[0].timeout_ms == config.embed_trigger.timeout_ms


def test_dispatch_failure_leaves_rows_pending(store, log, config):
    trigger = EmbedTrigger(FailingDispatcher(), config=config)
    coordinator = IngestionCoordinator(
        store, config=config, on_batch_committed=trigger.on_batch_committed
    )

    assert coordinator.ingest(json_log(3), log.id) == 3
    assert all(r["embedding_status"] == "pending" for r in store.rows())


class UnreachableStore(InMemoryMeasurementStore):
    def create_log(self, *args, **kwargs):
        raise psycopg.OperationalError("connection refused")

    def get_log(self, log_id):
        raise psycopg.OperationalError("connection refused")


class TestHandlers:
    def test_process_request_missing_id(self, store, config):
        response = handle_process_request({}, IngestionCoordinator(store, config=config))
        assert response.status == STATUS_BAD_REQUEST
        assert response.error == "Missing measurement_id in request body"

    def test_process_request_bad_id(self, store, config):
        coordinator = IngestionCoordinator(store, config=config)
        response = handle_process_request({"measurement_id": "abc"}, coordinator)
        assert response.status == STATUS_BAD_REQUEST

    def test_process_request_success(self, store, log, config, object_storage):
        object_storage.objects[log.storage_object_path] = json_log(2)
        coordinator = IngestionCoordinator(store, storage=object_storage, config=config)

        response = handle_process_request({"measurement_id": log.id}, coordinator)
        assert response.status == STATUS_NO_CONTENT
        assert response.ok
        assert response.details["rows_inserted"] == 2
        assert response.details["parser"] == "json"

    def test_process_request_download_failure(self, store, log, config, object_storage):
        coordinator = IngestionCoordinator(store, storage=object_storage, config=config)
        response = handle_process_request({"measurement_id": log.id}, coordinator)
        assert response.status == STATUS_SERVER_ERROR
        assert response.error == "Failed to process measurement file"

    def test_process_request_no_measurements(self, store, log, config, object_storage):
        object_storage.objects[log.storage_object_path] = b"nothing useful"
        coordinator = IngestionCoordinator(store, storage=object_storage, config=config)
        response = handle_process_request({"measurement_id": log.id}, coordinator)
        assert response.status == STATUS_SERVER_ERROR
        assert not response.ok

    def test_process_request_store_outage(self, config, object_storage):
        coordinator = IngestionCoordinator(
            UnreachableStore(), storage=object_storage, config=config
        )
        response = handle_process_request({"measurement_id": 1}, coordinator)
        assert response.status == STATUS_SERVER_ERROR
        assert "connection refused" in response.details["reason"]

    def test_upload_event(self, store, config, object_storage):
        object_storage.objects["uploads/a.log"] = json_log(3)
        coordinator = IngestionCoordinator(store, storage=object_storage, config=config)

        response = handle_upload_event(
            {"bucket": "files", "object_id": "o-1", "owner": "u-1", "name": "uploads/a.log"},
            coordinator,
        )
        assert response.status == STATUS_NO_CONTENT
        assert response.details["rows_inserted"] == 3
        assert len(store.logs) == 1

    def test_upload_event_other_bucket(self, store, config):
        coordinator = IngestionCoordinator(store, config=config)
        response = handle_upload_event(
            {"bucket": "avatars", "object_id": "o-1", "name": "me.png"}, coordinator
        )
        assert response.status == STATUS_NO_CONTENT
        assert response.details == {"ignored": True}

    def test_upload_event_store_outage(self, config, object_storage):
        coordinator = IngestionCoordinator(
            UnreachableStore(), storage=object_storage, config=config
        )
        response = handle_upload_event(
            {"bucket": "files", "object_id": "o-1", "name": "uploads/a.log"}, coordinator
        )
        assert response.status == STATUS_SERVER_ERROR
        assert response.error == "Failed to register upload"

    def test_upload_event_invalid(self, store, config):
        coordinator = IngestionCoordinator(store, config=config)
        response = handle_upload_event({"bucket": "files"}, coordinator)
        assert response.status == STATUS_BAD_REQUEST

    def test_embed_request(self, store, log, provider, config):
        ids = IngestionCoordinator(store, config=config).ingest_file(json_log(3), log.id).row_ids
        worker = EmbeddingWorker(store, provider, config=config)
        payload = EmbedRequest(ids, "measurements", "embedding_text", "embedding").to_payload()

        response = handle_embed_request(payload, worker)
        assert response.status == STATUS_NO_CONTENT
        assert response.details["completed"] == 3

        # redelivery of the same request does nothing
        again = handle_embed_request(payload, worker)
        assert again.details["fetched"] == 0
        assert len(provider.calls) == 3

    def test_embed_request_invalid(self, store, provider, config):
        worker = EmbeddingWorker(store, provider, config=config)
        response = handle_embed_request({"table": "measurements"}, worker)
        assert response.status == STATUS_BAD_REQUEST

    def test_embed_request_unknown_table(self, store, provider, config):
        worker = EmbeddingWorker(store, provider, config=config)
        payload = EmbedRequest([1], "other", "c", "e").to_payload()
        response = handle_embed_request(payload, worker)
        assert response.status == STATUS_SERVER_ERROR
