"""
Base embedding provider protocol.

The embedding worker and similarity search only depend on this interface, so
the model backend can be swapped without touching the pipeline.
"""

from typing import List, Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Protocol for embedding providers.

    Vectors are returned as List[float] (no numpy arrays) so they can be
    written to the store directly.
    """

    @property
    def dims(self) -> int:
        """Number of dimensions in the embedding vector."""
        ...

    @property
    def model_id(self) -> str:
        """Model identifier (e.g., "thenlper/gte-small")."""
        ...

    @property
    def provider_name(self) -> str:
        """Provider name (e.g., "sentence-transformers")."""
        ...

    def run(
        self, text: str, mean_pool: bool = True, normalize: bool = True
    ) -> List[float]:
        """
        Embed one text.

        Args:
            text: Text to embed
            mean_pool: Pool token embeddings by their mean
            normalize: Scale the result to unit L2 length

        Returns:
            Embedding vector of length ``dims``

        Raises:
            ValueError: If text is empty
            ModelCallError: If the model fails
        """
        ...

    def embed_query(self, text: str) -> List[float]:
        """Embed a search query (mean pooled, unit length)."""
        ...
