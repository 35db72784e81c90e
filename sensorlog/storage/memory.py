"""
In-process MeasurementStore.

Used for local runs and tests. Batches are applied atomically (all rows or
none) and similarity ranking mirrors the Postgres query: negative inner
product, strict threshold, ties broken by id.
"""

from __future__ import annotations

import copy
import itertools
import threading
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from sensorlog.ingestion.sections import LogFile
from sensorlog.shared.errors import DatabaseWriteError, RowUpdateError

from .base import MEASUREMENTS_TABLE, STATUS_COLUMN, SearchHit


def rank_by_inner_product(
    query_vector: Sequence[float],
    rows: Sequence[Dict[str, Any]],
    threshold: float,
    embedding_column: str = "embedding",
) -> List[SearchHit]:
    """
    Rank rows by inner product with the query.

    Rows without an embedding are ignored. Only similarity strictly greater
    than ``threshold`` is kept; most similar first.
    """
    candidates = [r for r in rows if r.get(embedding_column) is not None]
    if not candidates:
        return []

    query = np.asarray(query_vector, dtype=np.float64)
    matrix = np.asarray([r[embedding_column] for r in candidates], dtype=np.float64)
    scores = matrix @ query

    hits = [
        SearchHit(measurement=copy.deepcopy(row), similarity=float(score))
        for row, score in zip(candidates, scores)
        if score > threshold
    ]
    hits.sort(key=lambda h: (-h.similarity, h.id))
    return hits


class InMemoryMeasurementStore:
    """Dictionary-backed MeasurementStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self._log_ids = itertools.count(1)
        self._row_ids = itertools.count(1)
        self.logs: Dict[int, LogFile] = {}
        self.tables: Dict[str, Dict[int, Dict[str, Any]]] = {MEASUREMENTS_TABLE: {}}

    def _table(self, table: str) -> Dict[int, Dict[str, Any]]:
        try:
            return self.tables[table]
        except KeyError:
            raise KeyError(f"Unknown table: {table}") from None

    # ----- logs -----

    def create_log(
        self,
        name: str,
        storage_object_id: str,
        storage_object_path: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> LogFile:
        with self._lock:
            log = LogFile(
                id=next(self._log_ids),
                name=name,
                storage_object_id=storage_object_id,
                storage_object_path=storage_object_path,
                created_by=created_by,
            )
            self.logs[log.id] = log
        return log

    def get_log(self, log_id: int) -> Optional[LogFile]:
        return self.logs.get(log_id)

    def delete_log(self, log_id: int) -> None:
        """Delete a log and cascade to its measurement rows."""
        with self._lock:
            self.logs.pop(log_id, None)
            rows = self.tables[MEASUREMENTS_TABLE]
            for row_id in [i for i, r in rows.items() if r["log_id"] == log_id]:
                del rows[row_id]

    # ----- measurements -----

    def insert_measurements(self, rows: Sequence[Dict[str, Any]]) -> List[int]:
        with self._lock:
            staged = {}
            for row in rows:
                if row.get("log_id") not in self.logs:
                    raise DatabaseWriteError(
                        f"Insert batch failed: log {row.get('log_id')} does not exist"
                    )
                row_id = next(self._row_ids)
                staged[row_id] = {"id": row_id, **copy.deepcopy(row)}
            self.tables[MEASUREMENTS_TABLE].update(staged)
        return list(staged.keys())

    def fetch_unembedded(
        self,
        table: str,
        ids: Sequence[Any],
        content_column: str,
        embedding_column: str,
    ) -> List[Dict[str, Any]]:
        rows = self._table(table)
        wanted = set(ids)
        return [
            {"id": row_id, content_column: row.get(content_column)}
            for row_id, row in sorted(rows.items())
            if row_id in wanted and row.get(embedding_column) is None
        ]

    def mark_status(
        self,
        table: str,
        row_id: Any,
        status: str,
        embedding_column: str,
    ) -> bool:
        with self._lock:
            row = self._table(table).get(row_id)
            if row is None or row.get(embedding_column) is not None:
                return False
            row[STATUS_COLUMN] = status
        return True

    def write_embedding(
        self,
        table: str,
        row_id: Any,
        embedding_column: str,
        vector: Sequence[float],
        status: str,
    ) -> None:
        with self._lock:
            row = self._table(table).get(row_id)
            if row is None:
                raise RowUpdateError(row_id, "row not found")
            row[embedding_column] = [float(v) for v in vector]
            row[STATUS_COLUMN] = status

    def match_measurements(
        self, query_vector: Sequence[float], threshold: float
    ) -> List[SearchHit]:
        rows = list(self.tables[MEASUREMENTS_TABLE].values())
        return rank_by_inner_product(query_vector, rows, threshold)

    # ----- inspection helpers -----

    def rows(self, table: str = MEASUREMENTS_TABLE) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for _, r in sorted(self._table(table).items())]

    def get_row(self, row_id: Any, table: str = MEASUREMENTS_TABLE) -> Optional[Dict[str, Any]]:
        row = self._table(table).get(row_id)
        return copy.deepcopy(row) if row is not None else None
