# Shared fixtures: in-memory store, fake storage and a deterministic provider

import os
from typing import Dict, List, Optional

import pytest

# Load config/test.yaml for anything that falls back to the global config
os.environ["ENV"] = "test"

from sensorlog.shared.config import Config  # noqa: E402
from sensorlog.shared.errors import ModelCallError, StorageDownloadError  # noqa: E402
from sensorlog.storage import InMemoryMeasurementStore  # noqa: E402

DIMS = 384


def unit_vector(index: int, dims: int = DIMS) -> List[float]:
    vector = [0.0] * dims
    vector[index % dims] = 1.0
    return vector


class FakeEmbeddingProvider:
    """Deterministic provider: a different one-hot vector per call."""

    def __init__(self, dims: int = DIMS, fail_on: Optional[str] = None):
        self._dims = dims
        self.fail_on = fail_on
        self.calls: List[str] = []

    @property
    def dims(self) -> int:
        return self._dims

    @property
    def model_id(self) -> str:
        return "fake-model"

    @property
    def provider_name(self) -> str:
        return "fake"

    def run(self, text, mean_pool=True, normalize=True):
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise ModelCallError(f"model rejected input containing {self.fail_on!r}")
        return unit_vector(len(self.calls), self._dims)

    def embed_query(self, text):
        return self.run(text)


class FakeObjectStorage:
    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self.objects = dict(objects or {})

    def download(self, path: str) -> bytes:
        try:
            return self.objects[path]
        except KeyError:
            raise StorageDownloadError(path, "object not found") from None


@pytest.fixture()
def config():
    return Config()


@pytest.fixture()
def store():
    return InMemoryMeasurementStore()


@pytest.fixture()
def log(store):
    return store.create_log(
        name="run-1.log",
        storage_object_id="obj-1",
        storage_object_path="run-1.log",
        created_by="user-1",
    )


@pytest.fixture()
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture()
def make_provider():
    return FakeEmbeddingProvider


@pytest.fixture()
def object_storage():
    return FakeObjectStorage()
