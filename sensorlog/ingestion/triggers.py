"""
Trigger handlers for pipeline stages.

The trigger dispatcher delivers three payloads, at least once each:

    upload event    {"bucket", "object_id", "owner", "name"}
    process request {"measurement_id"}                  (a LogFile id)
    embed request   {"ids", "table", "contentColumn", "embeddingColumn"}

Handlers turn a payload into a call on the coordinator or the worker and
report a HandlerResponse. Repeated delivery is safe: embedding skips rows
that already have a vector.

After each committed insert batch the coordinator's ids are split into embed
requests by plan_embed_requests() and handed to a dispatcher. The plan is a
pure function of the ids, so an interrupted dispatch loop can be replayed
with the same inputs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from sensorlog.shared.config import Config, get_config
from sensorlog.shared.errors import DatabaseWriteError
from sensorlog.shared.observability import bind_invocation, get_logger

from .coordinator import IngestionCoordinator
from .embed_worker import EmbeddingWorker
from .sections import UploadEvent

logger = get_logger(__name__)

STATUS_NO_CONTENT = 204
STATUS_BAD_REQUEST = 400
STATUS_SERVER_ERROR = 500


@dataclass
class HandlerResponse:
    """Outcome of a handler invocation."""

    status: int
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status < 400


@dataclass(frozen=True)
class EmbedRequest:
    ids: List[Any]
    table: str
    content_column: str
    embedding_column: str
    timeout_ms: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "ids": list(self.ids),
            "table": self.table,
            "contentColumn": self.content_column,
            "embeddingColumn": self.embedding_column,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "EmbedRequest":
        ids = payload.get("ids")
        if not isinstance(ids, list):
            raise ValueError("Embed request requires an 'ids' list")
        missing = [
            key
            for key in ("table", "contentColumn", "embeddingColumn")
            if not payload.get(key)
        ]
        if missing:
            raise ValueError(f"Embed request missing fields: {', '.join(missing)}")
        return cls(
            ids=list(ids),
            table=str(payload["table"]),
            content_column=str(payload["contentColumn"]),
            embedding_column=str(payload["embeddingColumn"]),
        )


def plan_embed_requests(
    ids: Sequence[Any],
    table: str,
    content_column: str,
    embedding_column: str,
    batch_size: int,
    timeout_ms: Optional[int] = None,
) -> List[EmbedRequest]:
    """
    Split inserted row ids into ceil(len(ids) / batch_size) embed requests.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    batch_count = math.ceil(len(ids) / batch_size)
    return [
        EmbedRequest(
            ids=list(ids[i * batch_size : (i + 1) * batch_size]),
            table=table,
            content_column=content_column,
            embedding_column=embedding_column,
            timeout_ms=timeout_ms,
        )
        for i in range(batch_count)
    ]


class EmbedDispatcher(Protocol):
    def dispatch(self, request: EmbedRequest) -> Any:
        ...


class InlineDispatcher:
    """Runs embed requests in-process, one worker invocation per request."""

    def __init__(self, worker: EmbeddingWorker):
        self.worker = worker
        self.results = []

    def dispatch(self, request: EmbedRequest):
        timeout = request.timeout_ms / 1000.0 if request.timeout_ms else None
        result = self.worker.embed_batch(
            request.ids,
            request.table,
            request.content_column,
            request.embedding_column,
            timeout_seconds=timeout,
        )
        self.results.append(result)
        return result


class EmbedTrigger:
    """
    Insert trigger: turns committed batches into dispatched embed requests.

    Pass ``EmbedTrigger(...).on_batch_committed`` to IngestionCoordinator.
    """

    def __init__(self, dispatcher: EmbedDispatcher, config: Optional[Config] = None):
        trigger = (config or get_config()).embed_trigger
        self.dispatcher = dispatcher
        self.table = trigger.table
        self.content_column = trigger.content_column
        self.embedding_column = trigger.embedding_column
        self.batch_size = trigger.batch_size
        self.timeout_ms = trigger.timeout_ms

    def on_batch_committed(self, ids: List[Any]) -> List[EmbedRequest]:
        requests = plan_embed_requests(
            ids,
            self.table,
            self.content_column,
            self.embedding_column,
            self.batch_size,
            timeout_ms=self.timeout_ms,
        )
        for request in requests:
            logger.info(
                "embed_request_dispatched", table=request.table, rows=len(request.ids)
            )
            try:
                self.dispatcher.dispatch(request)
            except Exception as e:
                # Rows stay pending; a replayed request picks them up
                logger.error(
                    "embed_dispatch_failed",
                    table=request.table,
                    rows=len(request.ids),
                    error=str(e),
                )
        return requests


def handle_upload_event(
    payload: Mapping[str, Any], coordinator: IngestionCoordinator
) -> HandlerResponse:
    """Register a LogFile for an upload and ingest it."""
    bind_invocation("upload", object_id=payload.get("object_id"))
    try:
        event = UploadEvent.from_payload(payload)
    except ValueError as e:
        logger.error("upload_event_invalid", error=str(e))
        return HandlerResponse(STATUS_BAD_REQUEST, error=str(e))

    try:
        log = coordinator.register_upload(event)
    except Exception as e:
        logger.error(
            "upload_registration_failed", error=str(e), error_type=type(e).__name__
        )
        return HandlerResponse(
            STATUS_SERVER_ERROR, error="Failed to register upload", details={"reason": str(e)}
        )
    if log is None:
        return HandlerResponse(STATUS_NO_CONTENT, details={"ignored": True})

    return handle_process_request({"measurement_id": log.id}, coordinator)


def handle_process_request(
    payload: Mapping[str, Any], coordinator: IngestionCoordinator
) -> HandlerResponse:
    """Ingest the file behind ``payload["measurement_id"]``."""
    log_id = payload.get("measurement_id")
    bind_invocation("process", log_id=log_id)

    if not log_id:
        logger.error("process_request_invalid", reason="missing measurement_id")
        return HandlerResponse(
            STATUS_BAD_REQUEST, error="Missing measurement_id in request body"
        )
    try:
        log_id = int(log_id)
    except (TypeError, ValueError):
        return HandlerResponse(
            STATUS_BAD_REQUEST, error=f"Invalid measurement_id: {log_id!r}"
        )

    try:
        result = coordinator.process_log(log_id)
    except Exception as e:
        logger.error(
            "process_request_failed", log_id=log_id, error=str(e), error_type=type(e).__name__
        )
        details: Dict[str, Any] = {"reason": str(e)}
        if isinstance(e, DatabaseWriteError):
            details["rows_committed"] = e.rows_committed
        return HandlerResponse(
            STATUS_SERVER_ERROR,
            error="Failed to process measurement file",
            details=details,
        )

    return HandlerResponse(
        STATUS_NO_CONTENT,
        details={
            "rows_inserted": result.rows_inserted,
            "batches": result.batches_written,
            "parser": result.parser,
        },
    )


def handle_embed_request(
    payload: Mapping[str, Any], worker: EmbeddingWorker
) -> HandlerResponse:
    """
    Run the embedding worker for one request.

    Per-row failures are reported through embedding_status, not through the
    response; only I/O failures of the invocation itself return an error.
    """
    bind_invocation("embed", table=payload.get("table"))
    try:
        request = EmbedRequest.from_payload(payload)
    except ValueError as e:
        logger.error("embed_request_invalid", error=str(e))
        return HandlerResponse(STATUS_BAD_REQUEST, error=str(e))

    try:
        result = worker.embed_batch(
            request.ids, request.table, request.content_column, request.embedding_column
        )
    except Exception as e:
        logger.error("embed_request_failed", error=str(e), error_type=type(e).__name__)
        return HandlerResponse(
            STATUS_SERVER_ERROR,
            error="Failed to process embeddings",
            details={"reason": str(e)},
        )

    return HandlerResponse(
        STATUS_NO_CONTENT,
        details={
            "fetched": result.fetched,
            "completed": len(result.completed),
            "failed": len(result.failed),
            "skipped": len(result.skipped),
        },
    )
