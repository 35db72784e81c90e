"""
Ingestion coordinator: file bytes -> measurement rows.

Flow for one log file:
    1. Decode bytes and parse (JSON first, text fallback)
    2. Turn each section into a draft row (display name, embedding text,
       16-dim readings summary, status "pending")
    3. Insert drafts in fixed-size batches, one transaction per batch
    4. Hand the ids of each committed batch to the embed dispatcher

Batches are at-least-once, not all-or-nothing: when batch N fails, batches
before it stay committed, the error is raised, and later batches are not
attempted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from sensorlog.shared.config import Config, SectionDefaultsConfig, get_config
from sensorlog.shared.errors import (
    DatabaseWriteError,
    EmptyVectorError,
    NoValidMeasurementsError,
    StorageDownloadError,
)
from sensorlog.shared.observability import get_logger
from sensorlog.shared.observability.metrics import (
    ingestion_duration_seconds,
    insert_batches_total,
    rows_inserted_total,
    sections_dropped_total,
)
from sensorlog.shared.vector_utils import VectorNormalizer

from .parsers import parse_measurements
from .sections import (
    LogFile,
    MeasurementDraft,
    MeasurementSection,
    UploadEvent,
    display_name,
    embedding_text,
)

logger = get_logger(__name__)

# Called with the ids of every committed insert batch
BatchCallback = Callable[[List[int]], Any]


@dataclass
class IngestionResult:
    """Outcome of ingesting one log file."""

    log_id: int
    parser: str
    sections_parsed: int
    rows_inserted: int = 0
    batches_written: int = 0
    batch_sizes: List[int] = field(default_factory=list)
    row_ids: List[int] = field(default_factory=list)
    duration_ms: int = 0


def decode_content(file_bytes: bytes) -> str:
    """Decode file bytes as UTF-8, dropping a BOM and replacing bad sequences."""
    if isinstance(file_bytes, str):
        return file_bytes.lstrip("\ufeff")
    return file_bytes.decode("utf-8-sig", errors="replace")


def chunked(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    if size <= 0:
        raise ValueError(f"batch size must be positive, got {size}")
    return [items[i : i + size] for i in range(0, len(items), size)]


class IngestionCoordinator:
    """
    Parses uploaded logs and writes measurement rows.

    This is the only component that creates LogFile and measurement rows.
    """

    def __init__(
        self,
        store,
        storage=None,
        config: Optional[Config] = None,
        batch_size: Optional[int] = None,
        on_batch_committed: Optional[BatchCallback] = None,
    ):
        """
        Args:
            store: MeasurementStore
            storage: ObjectStorage, required only by process_log()
            config: Config (defaults to the global config)
            batch_size: Rows per insert transaction (config ingestion.batch_size)
            on_batch_committed: Receives the ids of each committed batch
        """
        config = config or get_config()
        self.store = store
        self.storage = storage
        self.bucket = config.storage.bucket
        self.batch_size = batch_size or config.ingestion.batch_size
        self.defaults: SectionDefaultsConfig = config.ingestion.defaults
        self.summary_normalizer = VectorNormalizer(config.ingestion.summary_dims)
        self.on_batch_committed = on_batch_committed

    # ----- LogFile lifecycle -----

    def register_upload(self, event: UploadEvent) -> Optional[LogFile]:
        """
        Create the LogFile for an upload event.

        Returns:
            The new LogFile, or None when the upload is for another bucket
        """
        if event.bucket != self.bucket:
            logger.info(
                "upload_ignored",
                bucket=event.bucket,
                expected_bucket=self.bucket,
                object_id=event.object_id,
            )
            return None

        log = self.store.create_log(
            name=event.name,
            storage_object_id=event.object_id,
            storage_object_path=event.name,
            created_by=event.owner,
        )
        logger.info("log_registered", log_id=log.id, object_path=event.name)
        return log

    def process_log(self, log_id: int) -> IngestionResult:
        """
        Download the file behind a LogFile and ingest it.

        Raises:
            StorageDownloadError: If the log or its object cannot be fetched
            NoValidMeasurementsError: If the file holds no valid section
            DatabaseWriteError: If an insert batch fails
            StoreReadError: If the log record cannot be read
        """
        if self.storage is None:
            raise StorageDownloadError(None, "no object storage configured")

        log = self.store.get_log(log_id)
        if log is None:
            raise StorageDownloadError(None, f"log {log_id} not found")
        if not log.storage_object_path:
            raise StorageDownloadError(None, "Storage path not found for measurement")

        logger.info("downloading_file", log_id=log_id, path=log.storage_object_path)
        file_bytes = self.storage.download(log.storage_object_path)
        if not file_bytes:
            raise StorageDownloadError(log.storage_object_path, "No file data received")

        return self.ingest_file(file_bytes, log_id)

    # ----- ingestion -----

    def ingest(self, file_bytes: bytes, owning_log_id: int) -> int:
        """
        Parse and persist one file.

        Returns:
            Number of rows inserted
        """
        return self.ingest_file(file_bytes, owning_log_id).rows_inserted

    def ingest_file(self, file_bytes: bytes, owning_log_id: int) -> IngestionResult:
        start = time.monotonic()
        content = decode_content(file_bytes)
        logger.info(
            "ingestion_started",
            log_id=owning_log_id,
            size=len(content),
            preview=content[:200],
        )

        parsed = parse_measurements(content, defaults=self.defaults)
        drafts = self.build_drafts(parsed.sections, owning_log_id)
        if not drafts:
            raise NoValidMeasurementsError(
                "No valid measurements left after summarising sections"
            )

        result = IngestionResult(
            log_id=owning_log_id,
            parser=parsed.parser,
            sections_parsed=len(parsed.sections),
        )
        try:
            self._write_batches(drafts, result)
        finally:
            result.duration_ms = int((time.monotonic() - start) * 1000)
            ingestion_duration_seconds.observe(result.duration_ms / 1000.0)

        logger.info(
            "ingestion_completed",
            log_id=owning_log_id,
            parser=result.parser,
            rows_inserted=result.rows_inserted,
            batches=result.batches_written,
            duration_ms=result.duration_ms,
        )
        return result

    def build_drafts(
        self, sections: Sequence[MeasurementSection], log_id: int
    ) -> List[MeasurementDraft]:
        drafts = []
        for section in sections:
            try:
                summary = self.summary_normalizer.normalize(section.sensor_readings)
            except EmptyVectorError as e:
                logger.warning(
                    "section_dropped", sensor_name=section.sensor_name, reason=str(e)
                )
                sections_dropped_total.labels(parser="coordinator", reason="empty_vector").inc()
                continue

            drafts.append(
                MeasurementDraft(
                    log_id=log_id,
                    name=display_name(section),
                    section=section,
                    embedding_text=embedding_text(section),
                    readings_summary=summary,
                )
            )
        return drafts

    def _write_batches(
        self, drafts: Sequence[MeasurementDraft], result: IngestionResult
    ) -> None:
        batches = chunked(drafts, self.batch_size)
        total = len(batches)

        for index, batch in enumerate(batches):
            logger.info(
                "writing_batch",
                log_id=result.log_id,
                batch=index + 1,
                total_batches=total,
                rows=len(batch),
            )
            try:
                ids = self.store.insert_measurements([d.to_row() for d in batch])
            except Exception as e:
                insert_batches_total.labels(status="failed").inc()
                logger.error(
                    "insert_batch_failed",
                    log_id=result.log_id,
                    batch=index + 1,
                    total_batches=total,
                    rows_committed=result.rows_inserted,
                    error=str(e),
                )
                raise DatabaseWriteError(
                    f"Insert batch {index + 1}/{total} failed: {e}",
                    batch_index=index,
                    rows_committed=result.rows_inserted,
                ) from e

            insert_batches_total.labels(status="committed").inc()
            rows_inserted_total.inc(len(ids))
            result.batches_written += 1
            result.batch_sizes.append(len(ids))
            result.rows_inserted += len(ids)
            result.row_ids.extend(ids)

            if self.on_batch_committed is not None and ids:
                self.on_batch_committed(list(ids))
