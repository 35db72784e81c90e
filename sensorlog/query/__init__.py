"""Query side: similarity search over stored embeddings."""

from .similarity import SimilaritySearch

__all__ = ["SimilaritySearch"]
