"""
Error taxonomy for the ingestion and embedding pipeline.

Recoverable errors are handled inside the pipeline:
    - NotJsonError: JSON parser could not read the file, text parser takes over
    - ParseBlockError: one text block is skipped, siblings continue
    - EmptyVectorError: one section cannot be summarised and is dropped
    - ModelCallError / RowUpdateError: one row is marked failed

Fatal errors abort the current invocation and reach the caller:
    - NoValidMeasurementsError: nothing to write for the file
    - StorageDownloadError: file could not be fetched
    - DatabaseWriteError: an insert batch failed (earlier batches stay committed)
    - StoreReadError: a lookup against the measurement store failed
"""

from typing import Optional


class SensorLogError(Exception):
    """Base class for all pipeline errors."""


class NotJsonError(SensorLogError):
    """Raised when file content is not valid JSON."""


class ParseBlockError(SensorLogError):
    """Raised when a single text block does not yield a measurement section."""

    def __init__(self, reason: str, block_index: Optional[int] = None):
        self.reason = reason
        self.block_index = block_index
        super().__init__(reason)


class NoValidMeasurementsError(SensorLogError):
    """Raised when no parser produced at least one valid section."""

    def __init__(self, message: str = "No valid measurements found in file"):
        super().__init__(message)


class EmptyVectorError(SensorLogError, ValueError):
    """Raised when an empty sequence is asked to be padded to a fixed dimension."""


class StorageDownloadError(SensorLogError):
    """Raised when the object storage collaborator cannot return the file."""

    def __init__(self, path: Optional[str], reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to download {path!r}: {reason}")


class DatabaseWriteError(SensorLogError):
    """Raised when an insert batch cannot be written."""

    def __init__(
        self,
        reason: str,
        batch_index: Optional[int] = None,
        rows_committed: int = 0,
    ):
        self.reason = reason
        self.batch_index = batch_index
        self.rows_committed = rows_committed
        super().__init__(reason)


class StoreReadError(SensorLogError):
    """Raised when the measurement store cannot answer a read."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ModelCallError(SensorLogError, RuntimeError):
    """Raised when the embedding model fails for one input."""


class RowUpdateError(SensorLogError):
    """Raised when a single row's embedding or status update fails."""

    def __init__(self, row_id, reason: str):
        self.row_id = row_id
        self.reason = reason
        super().__init__(f"Failed to update row {row_id}: {reason}")
