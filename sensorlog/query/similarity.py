"""
Similarity search over stored measurement embeddings.

Stored and query vectors are unit length, so ranking by inner product gives
the same order as cosine similarity and is cheaper to evaluate. Results are
rows whose similarity is strictly above the threshold, most similar first,
with no implicit limit.
"""

from typing import List, Optional, Sequence

import numpy as np

from sensorlog.shared.config import Config, get_config
from sensorlog.shared.observability import get_logger
from sensorlog.shared.observability.metrics import (
    similarity_search_hits,
    similarity_searches_total,
)
from sensorlog.storage.base import SearchHit

logger = get_logger(__name__)

# Tolerance when checking that a query vector is unit length
UNIT_NORM_TOLERANCE = 1e-3


class SimilaritySearch:
    """Read-only ranking of measurements against a query vector."""

    def __init__(self, store, provider=None, config: Optional[Config] = None):
        """
        Args:
            store: MeasurementStore
            provider: EmbeddingProvider, needed only by search_text()
            config: Config (defaults to the global config)
        """
        config = config or get_config()
        self.store = store
        self.provider = provider
        self.dims = config.embedding.dims
        self.default_threshold = config.search.match_threshold

    def _prepare_query(self, query_vector: Sequence[float]) -> List[float]:
        vector = np.asarray(query_vector, dtype=np.float64)
        if vector.ndim != 1 or vector.shape[0] != self.dims:
            raise ValueError(
                f"Query vector must have {self.dims} dimensions, got {vector.shape}"
            )
        norm = float(np.linalg.norm(vector))
        if norm == 0.0:
            raise ValueError("Query vector must not be all zeros")
        if abs(norm - 1.0) > UNIT_NORM_TOLERANCE:
            logger.debug("query_vector_normalized", norm=norm)
            vector = vector / norm
        return vector.tolist()

    def search(
        self, query_vector: Sequence[float], threshold: Optional[float] = None
    ) -> List[SearchHit]:
        """
        Rank stored measurements by similarity to ``query_vector``.

        Args:
            query_vector: Query embedding (rescaled to unit length if needed)
            threshold: Minimum similarity, exclusive (config search.match_threshold)

        Returns:
            SearchHits ordered most similar first
        """
        threshold = self.default_threshold if threshold is None else threshold
        query = self._prepare_query(query_vector)

        try:
            hits = self.store.match_measurements(query, threshold)
        except Exception:
            similarity_searches_total.labels(status="error").inc()
            raise

        similarity_searches_total.labels(status="ok").inc()
        similarity_search_hits.observe(len(hits))
        logger.info("similarity_search", threshold=threshold, hits=len(hits))
        return hits

    def search_text(
        self, text: str, threshold: Optional[float] = None
    ) -> List[SearchHit]:
        """Embed ``text`` with the provider, then search."""
        if self.provider is None:
            raise ValueError("search_text requires an embedding provider")
        return self.search(self.provider.embed_query(text), threshold)
