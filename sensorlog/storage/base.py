"""
Collaborator interfaces for storage.

MeasurementStore is the relational store (logs + measurements tables with a
vector index). ObjectStorage serves uploaded file bytes. Both are Protocols so
tests and local runs can swap in lightweight implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from sensorlog.ingestion.sections import LogFile

LOGS_TABLE = "logs"
MEASUREMENTS_TABLE = "measurements"
STATUS_COLUMN = "embedding_status"


@dataclass
class SearchHit:
    """A stored measurement row and its similarity to the query."""

    measurement: Dict[str, Any]
    similarity: float

    @property
    def id(self) -> Any:
        return self.measurement.get("id")


@runtime_checkable
class MeasurementStore(Protocol):
    """Relational store for log files and measurement rows."""

    def create_log(
        self,
        name: str,
        storage_object_id: str,
        storage_object_path: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> LogFile:
        """Insert a LogFile row and return it with its id."""
        ...

    def get_log(self, log_id: int) -> Optional[LogFile]:
        ...

    def insert_measurements(self, rows: Sequence[Dict[str, Any]]) -> List[int]:
        """
        Insert one batch of measurement rows in a single transaction.

        Returns:
            Ids of the inserted rows, in input order

        Raises:
            DatabaseWriteError: If the batch could not be committed
        """
        ...

    def fetch_unembedded(
        self,
        table: str,
        ids: Sequence[Any],
        content_column: str,
        embedding_column: str,
    ) -> List[Dict[str, Any]]:
        """
        Return ``{"id": ..., content_column: ...}`` for rows in ``ids`` whose
        embedding column is still NULL.
        """
        ...

    def mark_status(
        self,
        table: str,
        row_id: Any,
        status: str,
        embedding_column: str,
    ) -> bool:
        """
        Set embedding_status for one row that has no embedding yet.

        Returns:
            False when no row matched (already embedded or gone)

        Raises:
            RowUpdateError: If the update fails
        """
        ...

    def write_embedding(
        self,
        table: str,
        row_id: Any,
        embedding_column: str,
        vector: Sequence[float],
        status: str,
    ) -> None:
        """
        Store the vector and status for one row.

        Raises:
            RowUpdateError: If the update fails
        """
        ...

    def match_measurements(
        self, query_vector: Sequence[float], threshold: float
    ) -> List[SearchHit]:
        """Rows with inner-product similarity > threshold, most similar first."""
        ...


@runtime_checkable
class ObjectStorage(Protocol):
    """Object storage collaborator."""

    def download(self, path: str) -> bytes:
        """
        Raises:
            StorageDownloadError: If the object cannot be read
        """
        ...
