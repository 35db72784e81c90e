"""
Embedding provider interfaces and implementations.
"""

from typing import Optional

from sensorlog.shared.config import EmbeddingConfig

from .base import EmbeddingProvider

_PROVIDER_ALIASES = {
    "sentence_transformers": "sentence-transformers",
    "st": "sentence-transformers",
    "hf": "sentence-transformers",
}


def create_embedding_provider(
    config: Optional[EmbeddingConfig] = None,
) -> EmbeddingProvider:
    """
    Build the configured embedding provider.

    The sentence-transformers import is deferred so that modules depending
    only on the protocol do not load torch.
    """
    if config is None:
        from sensorlog.shared.config import get_config

        config = get_config().embedding

    name = _PROVIDER_ALIASES.get(config.provider, config.provider)
    if name == "sentence-transformers":
        from .sentence_transformers import SentenceTransformersProvider

        return SentenceTransformersProvider(
            model_name=config.model_name,
            expected_dims=config.dims,
            device=config.device,
        )

    raise ValueError(f"Unknown embedding provider: {config.provider}")


__all__ = ["EmbeddingProvider", "create_embedding_provider"]
