# Prometheus metrics for the ingestion and embedding pipeline

from prometheus_client import Counter, Histogram, generate_latest

from .logging import get_logger

logger = get_logger(__name__)

# ===== Parsing metrics =====
sections_parsed_total = Counter(
    "sensorlog_sections_parsed_total",
    "Valid measurement sections produced by a parser",
    ["parser"],
)

sections_dropped_total = Counter(
    "sensorlog_sections_dropped_total",
    "Sections or blocks discarded before persistence",
    ["parser", "reason"],
)

# ===== Ingestion metrics =====
rows_inserted_total = Counter(
    "sensorlog_rows_inserted_total",
    "Measurement rows committed to the store",
)

insert_batches_total = Counter(
    "sensorlog_insert_batches_total",
    "Insert batches attempted",
    ["status"],
)

ingestion_duration_seconds = Histogram(
    "sensorlog_ingestion_duration_seconds",
    "Time to parse and write one log file",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ===== Embedding metrics =====
embeddings_total = Counter(
    "sensorlog_embeddings_total",
    "Rows processed by the embedding worker",
    ["status"],
)

embedding_duration_seconds = Histogram(
    "sensorlog_embedding_duration_seconds",
    "Model call duration per row",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# ===== Search metrics =====
similarity_searches_total = Counter(
    "sensorlog_similarity_searches_total",
    "Similarity searches executed",
    ["status"],
)

similarity_search_hits = Histogram(
    "sensorlog_similarity_search_hits",
    "Rows returned per similarity search",
    buckets=(0, 1, 5, 10, 25, 50, 100, 250, 1000),
)


def get_metrics() -> bytes:
    """Render all registered metrics in Prometheus text format."""
    return generate_latest()
