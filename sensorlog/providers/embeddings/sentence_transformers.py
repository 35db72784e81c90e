"""
SentenceTransformers embedding provider implementation.

Default model is thenlper/gte-small (384 dimensions, mean pooling). Pooling
and L2 normalization are done here with numpy over the model's token
embeddings so both flags of ``run`` are honoured explicitly.
"""

import logging
from typing import List, Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from sensorlog.shared.config import get_config
from sensorlog.shared.errors import ModelCallError

logger = logging.getLogger(__name__)


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        raise ModelCallError("Cannot normalize a zero-length embedding")
    return vector / norm


class SentenceTransformersProvider:
    """
    Embedding provider using sentence-transformers library.

    Dimensions are validated on initialization to ensure the model produces
    vectors of the expected size.
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        expected_dims: Optional[int] = None,
        device: Optional[str] = None,
    ):
        """
        Args:
            model_name: Model identifier (defaults to config value)
            expected_dims: Expected embedding dimensions (defaults to config value)
            device: Device to use ('cpu', 'cuda', 'mps', or None for auto)

        Raises:
            ValueError: If actual dimensions don't match expected dimensions
            RuntimeError: If model loading fails
        """
        if model_name is None or expected_dims is None:
            config = get_config()
            model_name = model_name or config.embedding.model_name
            expected_dims = expected_dims or config.embedding.dims
            device = device or config.embedding.device

        self._model_name = model_name
        self._expected_dims = expected_dims
        self._provider_name = "sentence-transformers"

        try:
            logger.info(f"Loading SentenceTransformers model: {self._model_name}")
            self._model = SentenceTransformer(self._model_name, device=device)
        except Exception as e:
            logger.error(f"Failed to load model {self._model_name}: {e}")
            raise RuntimeError(f"Failed to load embedding model: {e}") from e

        self._validate_dimensions()

        logger.info(
            f"SentenceTransformers provider initialized: "
            f"model={self._model_name}, dims={self._dims}"
        )

    def _validate_dimensions(self) -> None:
        actual_dims = self._model.get_sentence_embedding_dimension()
        if actual_dims != self._expected_dims:
            error_msg = (
                f"Dimension mismatch for model {self._model_name}: "
                f"expected {self._expected_dims}, got {actual_dims}"
            )
            logger.error(error_msg)
            raise ValueError(error_msg)
        self._dims = actual_dims

    @property
    def dims(self) -> int:
        return self._dims

    @property
    def model_id(self) -> str:
        return self._model_name

    @property
    def provider_name(self) -> str:
        return self._provider_name

    def _token_embeddings(self, text: str) -> np.ndarray:
        # Token vectors come back already trimmed to the attention mask
        output = self._model.encode(
            [text],
            output_value="token_embeddings",
            show_progress_bar=False,
        )
        return np.asarray(output[0].detach().cpu().numpy(), dtype=np.float32)

    def run(
        self, text: str, mean_pool: bool = True, normalize: bool = True
    ) -> List[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        try:
            if mean_pool:
                vector = self._token_embeddings(text).mean(axis=0)
            else:
                vector = np.asarray(
                    self._model.encode([text], convert_to_numpy=True)[0],
                    dtype=np.float32,
                )
            if normalize:
                vector = l2_normalize(vector)
        except ModelCallError:
            raise
        except Exception as e:
            logger.error(f"Failed to embed text: {e}")
            raise ModelCallError(f"Embedding failed: {e}") from e

        embedding = vector.tolist()
        if len(embedding) != self._dims:
            raise ModelCallError(
                f"Embedding has wrong dimensions: "
                f"expected {self._dims}, got {len(embedding)}"
            )
        return embedding

    def embed_query(self, text: str) -> List[float]:
        return self.run(text, mean_pool=True, normalize=True)
