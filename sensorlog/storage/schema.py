"""
Postgres schema for logs and measurements.

Embeddings are unit length, so the HNSW index uses inner-product ops and
similarity search orders by ``embedding <#> query``.
"""

import psycopg

from sensorlog.shared.observability import get_logger
from sensorlog.shared.vector_utils import EMBEDDING_DIM, SUMMARY_DIM

logger = get_logger(__name__)

SCHEMA_TEMPLATE = """
CREATE EXTENSION IF NOT EXISTS vector;

CREATE TABLE IF NOT EXISTS logs (
    id                  BIGINT PRIMARY KEY GENERATED ALWAYS AS IDENTITY,
    name                TEXT NOT NULL,
    storage_object_id   TEXT NOT NULL,
    storage_object_path TEXT,
    created_by          TEXT,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS measurements (
    id                 BIGINT PRIMARY KEY GENERATED ALWAYS AS IDENTITY,
    log_id             BIGINT NOT NULL REFERENCES logs (id) ON DELETE CASCADE,
    name               TEXT NOT NULL,
    sensor_name        TEXT NOT NULL,
    meas_description   TEXT NOT NULL,
    units              TEXT NOT NULL,
    min_value          DOUBLE PRECISION NOT NULL,
    max_value          DOUBLE PRECISION NOT NULL,
    avg_value          DOUBLE PRECISION NOT NULL,
    total_measurements INTEGER NOT NULL,
    sensor_readings    DOUBLE PRECISION[] NOT NULL,
    source             TEXT NOT NULL,
    tst_id             TEXT NOT NULL,  -- human-authored, not always a valid timestamp
    uut_type           TEXT NOT NULL,
    meas_status        TEXT NOT NULL,
    serial_number      TEXT NOT NULL,
    category           TEXT NOT NULL,
    sub_category       TEXT NOT NULL,
    readings_summary   vector({summary_dims}) NOT NULL,
    embedding_text     TEXT NOT NULL,
    embedding_status   TEXT NOT NULL DEFAULT 'pending'
        CHECK (embedding_status IN ('pending', 'processing', 'completed', 'failed')),
    embedding          vector({embedding_dims})
);

CREATE INDEX IF NOT EXISTS ix_measurements_log_id ON measurements (log_id);

CREATE INDEX IF NOT EXISTS ix_measurements_embedding
    ON measurements USING hnsw (embedding vector_ip_ops);
"""


def render_schema(
    summary_dims: int = SUMMARY_DIM, embedding_dims: int = EMBEDDING_DIM
) -> str:
    return SCHEMA_TEMPLATE.format(
        summary_dims=int(summary_dims), embedding_dims=int(embedding_dims)
    )


def ensure_schema(
    conn: psycopg.Connection,
    summary_dims: int = SUMMARY_DIM,
    embedding_dims: int = EMBEDDING_DIM,
) -> None:
    """Create tables and indexes if they do not exist. Safe to call repeatedly."""
    with conn.cursor() as cur:
        cur.execute(render_schema(summary_dims, embedding_dims))
    conn.commit()
    logger.info("schema_ensured", tables=["logs", "measurements"])
