"""
Postgres + pgvector implementation of MeasurementStore.

Every call opens a short-lived connection: invocations are stateless and run
in parallel as separate processes, so no connection is shared between them.
Each insert batch is its own transaction.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np
import psycopg
from pgvector.psycopg import register_vector
from psycopg import sql
from psycopg.rows import dict_row

from sensorlog.ingestion.sections import LogFile
from sensorlog.shared.errors import DatabaseWriteError, RowUpdateError, StoreReadError
from sensorlog.shared.observability import get_logger

from .base import LOGS_TABLE, MEASUREMENTS_TABLE, STATUS_COLUMN, SearchHit
from .schema import ensure_schema

logger = get_logger(__name__)

_VECTOR_COLUMNS = ("readings_summary", "embedding")

_MATCH_SQL = sql.SQL(
    """
    SELECT m.*, -(m.embedding <#> %(query)s) AS similarity
    FROM {table} AS m
    WHERE m.embedding IS NOT NULL
      AND m.embedding <#> %(query)s < -%(threshold)s
    ORDER BY m.embedding <#> %(query)s, m.id
    """
)


def _as_vector(values: Optional[Sequence[float]]) -> Optional[np.ndarray]:
    if values is None:
        return None
    return np.asarray(values, dtype=np.float32)


def _row_to_dict(row: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(row)
    for column in _VECTOR_COLUMNS:
        value = out.get(column)
        if value is not None and hasattr(value, "tolist"):
            out[column] = value.tolist()
    return out


class PostgresMeasurementStore:
    """MeasurementStore backed by Postgres with the pgvector extension."""

    def __init__(self, conninfo: str, create_schema: bool = False, **schema_dims: int):
        self._conninfo = conninfo
        if create_schema:
            with psycopg.connect(self._conninfo) as conn:
                ensure_schema(conn, **schema_dims)

    @contextmanager
    def _connect(self) -> Iterator[psycopg.Connection]:
        with psycopg.connect(self._conninfo, row_factory=dict_row) as conn:
            register_vector(conn)
            yield conn

    # ----- logs -----

    def create_log(
        self,
        name: str,
        storage_object_id: str,
        storage_object_path: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> LogFile:
        query = sql.SQL(
            "INSERT INTO {table} (name, storage_object_id, storage_object_path, created_by) "
            "VALUES (%s, %s, %s, %s) RETURNING *"
        ).format(table=sql.Identifier(LOGS_TABLE))
        try:
            with self._connect() as conn:
                row = conn.execute(
                    query, (name, storage_object_id, storage_object_path, created_by)
                ).fetchone()
        except psycopg.Error as e:
            raise DatabaseWriteError(f"Failed to create log record: {e}") from e
        return LogFile(**row)

    def get_log(self, log_id: int) -> Optional[LogFile]:
        query = sql.SQL("SELECT * FROM {table} WHERE id = %s").format(
            table=sql.Identifier(LOGS_TABLE)
        )
        try:
            with self._connect() as conn:
                row = conn.execute(query, (log_id,)).fetchone()
        except psycopg.Error as e:
            raise StoreReadError(f"Failed to load log {log_id}: {e}") from e
        return LogFile(**row) if row else None

    # ----- measurements -----

    def insert_measurements(self, rows: Sequence[Dict[str, Any]]) -> List[int]:
        if not rows:
            return []

        columns = list(rows[0].keys())
        query = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals}) RETURNING id").format(
            table=sql.Identifier(MEASUREMENTS_TABLE),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            vals=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )

        params_seq = [
            [_as_vector(row[c]) if c in _VECTOR_COLUMNS else row[c] for c in columns]
            for row in rows
        ]

        ids: List[int] = []
        try:
            with self._connect() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.executemany(query, params_seq, returning=True)
                        # one result set per inserted row
                        while True:
                            ids.append(cur.fetchone()["id"])
                            if not cur.nextset():
                                break
        except psycopg.Error as e:
            raise DatabaseWriteError(f"Insert batch failed: {e}") from e
        return ids

    def fetch_unembedded(
        self,
        table: str,
        ids: Sequence[Any],
        content_column: str,
        embedding_column: str,
    ) -> List[Dict[str, Any]]:
        if not ids:
            return []
        query = sql.SQL(
            "SELECT id, {content} FROM {table} "
            "WHERE id = ANY(%s) AND {embedding} IS NULL ORDER BY id"
        ).format(
            content=sql.Identifier(content_column),
            table=sql.Identifier(table),
            embedding=sql.Identifier(embedding_column),
        )
        try:
            with self._connect() as conn:
                return [dict(r) for r in conn.execute(query, (list(ids),)).fetchall()]
        except psycopg.Error as e:
            raise StoreReadError(f"Failed to fetch rows from {table}: {e}") from e

    def mark_status(
        self,
        table: str,
        row_id: Any,
        status: str,
        embedding_column: str,
    ) -> bool:
        query = sql.SQL(
            "UPDATE {table} SET {status_col} = %s WHERE id = %s AND {embedding} IS NULL"
        ).format(
            table=sql.Identifier(table),
            status_col=sql.Identifier(STATUS_COLUMN),
            embedding=sql.Identifier(embedding_column),
        )
        try:
            with self._connect() as conn:
                cur = conn.execute(query, (status, row_id))
                return cur.rowcount > 0
        except psycopg.Error as e:
            raise RowUpdateError(row_id, str(e)) from e

    def write_embedding(
        self,
        table: str,
        row_id: Any,
        embedding_column: str,
        vector: Sequence[float],
        status: str,
    ) -> None:
        query = sql.SQL(
            "UPDATE {table} SET {embedding} = %s, {status_col} = %s WHERE id = %s"
        ).format(
            table=sql.Identifier(table),
            embedding=sql.Identifier(embedding_column),
            status_col=sql.Identifier(STATUS_COLUMN),
        )
        try:
            with self._connect() as conn:
                cur = conn.execute(query, (_as_vector(vector), status, row_id))
                if cur.rowcount == 0:
                    raise RowUpdateError(row_id, "row not found")
        except psycopg.Error as e:
            raise RowUpdateError(row_id, str(e)) from e

    def match_measurements(
        self, query_vector: Sequence[float], threshold: float
    ) -> List[SearchHit]:
        query = _MATCH_SQL.format(table=sql.Identifier(MEASUREMENTS_TABLE))
        params = {"query": _as_vector(query_vector), "threshold": float(threshold)}
        try:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        except psycopg.Error as e:
            raise StoreReadError(f"Similarity query failed: {e}") from e

        hits = []
        for row in rows:
            data = _row_to_dict(row)
            similarity = float(data.pop("similarity"))
            hits.append(SearchHit(measurement=data, similarity=similarity))
        return hits
