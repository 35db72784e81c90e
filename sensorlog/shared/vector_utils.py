"""
Shared utilities for vector operations.

Fixed-dimension normalization is used in two independent places:
    - SUMMARY_DIM (16): compact summary of a section's readings
    - EMBEDDING_DIM (384): dimension guard for text-embedding vectors

Padding repeats the last element; truncation keeps the leading elements.
Neither operation is reversible.
"""

from typing import List, Optional, Sequence

import numpy as np

from .errors import EmptyVectorError

SUMMARY_DIM = 16
EMBEDDING_DIM = 384


def normalize_vector(values: Sequence[float], target_dim: int) -> List[float]:
    """
    Force a numeric sequence to exactly ``target_dim`` elements.

    Args:
        values: Input numbers
        target_dim: Required output length

    Returns:
        New list of length ``target_dim``

    Raises:
        ValueError: If target_dim is not positive
        EmptyVectorError: If values is empty

    Examples:
        >>> normalize_vector([1, 2, 3], 5)
        [1.0, 2.0, 3.0, 3.0, 3.0]
        >>> normalize_vector([1, 2, 3, 4, 5], 3)
        [1.0, 2.0, 3.0]
    """
    if target_dim <= 0:
        raise ValueError(f"target_dim must be positive, got {target_dim}")
    if not values:
        raise EmptyVectorError(
            f"Cannot normalize an empty vector to {target_dim} dimensions"
        )

    floats = [float(v) for v in values]
    if len(floats) == target_dim:
        return floats
    if len(floats) < target_dim:
        return floats + [floats[-1]] * (target_dim - len(floats))
    return floats[:target_dim]


def unit_normalize(values: Sequence[float]) -> List[float]:
    """
    Scale a vector to unit L2 length.

    Raises:
        ValueError: If the vector is empty or all zeros
    """
    vector = np.asarray(values, dtype=np.float64)
    norm = float(np.linalg.norm(vector))
    if vector.size == 0 or norm == 0.0:
        raise ValueError("Cannot scale a zero-length vector to unit length")
    return (vector / norm).tolist()


class VectorNormalizer:
    """Pads or truncates sequences to one fixed dimension."""

    def __init__(self, target_dim: int):
        if target_dim <= 0:
            raise ValueError(f"target_dim must be positive, got {target_dim}")
        self._target_dim = target_dim

    @property
    def target_dim(self) -> int:
        return self._target_dim

    def normalize(self, values: Sequence[float]) -> List[float]:
        return normalize_vector(values, self._target_dim)

    def __repr__(self) -> str:
        return f"VectorNormalizer(target_dim={self._target_dim})"


def vector_expected_dim(vector: object) -> Optional[int]:
    """
    Determine the dimensionality of a dense vector.

    Returns None for None, empty lists, strings and objects without a length.
    """
    if vector is None:
        return None

    if isinstance(vector, (str, bytes)):
        return None

    if isinstance(vector, list):
        return len(vector) or None

    # numpy arrays and similar sized objects
    if hasattr(vector, "__len__"):
        try:
            return len(vector) or None
        except TypeError:
            return None

    return None
