"""Storage collaborators: relational measurement store and object storage."""

from .base import MeasurementStore, ObjectStorage, SearchHit
from .memory import InMemoryMeasurementStore
from .objects import LocalObjectStorage

__all__ = [
    "MeasurementStore",
    "ObjectStorage",
    "SearchHit",
    "InMemoryMeasurementStore",
    "LocalObjectStorage",
]
