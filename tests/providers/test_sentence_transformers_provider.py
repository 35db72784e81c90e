"""
SentenceTransformersProvider with the model class replaced by a stub, so no
weights are downloaded.
"""

import numpy as np
import pytest

from sensorlog.providers.embeddings import EmbeddingProvider, create_embedding_provider
from sensorlog.providers.embeddings import sentence_transformers as st_module
from sensorlog.providers.embeddings.sentence_transformers import (
    SentenceTransformersProvider,
    l2_normalize,
)
from sensorlog.shared.config import EmbeddingConfig
from sensorlog.shared.errors import ModelCallError


class TensorStub:
    """Mimics the torch tensor calls the provider makes."""

    def __init__(self, array):
        self._array = np.asarray(array, dtype=np.float32)

    def detach(self):
        return self

    def cpu(self):
        return self

    def numpy(self):
        return self._array


class ModelStub:
    dims = 4
    fail = False

    def __init__(self, model_name, device=None):
        self.model_name = model_name
        self.device = device
        self.encode_calls = []

    def get_sentence_embedding_dimension(self):
        return self.dims

    def encode(self, sentences, output_value=None, **kwargs):
        self.encode_calls.append(output_value)
        if self.fail:
            raise RuntimeError("CUDA out of memory")
        if output_value == "token_embeddings":
            # two tokens: mean is [2, 0, 0, 0]
            tokens = [[3.0, 0.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0]]
            return [TensorStub(tokens)]
        return np.asarray([[0.0, 3.0, 4.0, 0.0]], dtype=np.float32)


@pytest.fixture()
def stub_model(monkeypatch):
    ModelStub.dims = 4
    ModelStub.fail = False
    monkeypatch.setattr(st_module, "SentenceTransformer", ModelStub)
    return ModelStub


def make_provider(**kwargs):
    kwargs.setdefault("model_name", "thenlper/gte-small")
    kwargs.setdefault("expected_dims", 4)
    return SentenceTransformersProvider(**kwargs)


def test_mean_pool_and_normalize(stub_model):
    provider = make_provider()
    assert provider.run("psu input power") == [1.0, 0.0, 0.0, 0.0]


def test_mean_pool_without_normalize(stub_model):
    provider = make_provider()
    assert provider.run("psu", normalize=False) == [2.0, 0.0, 0.0, 0.0]


def test_sentence_embedding_path(stub_model):
    provider = make_provider()
    vector = provider.run("psu", mean_pool=False, normalize=True)
    assert vector == pytest.approx([0.0, 0.6, 0.8, 0.0])


def test_dimension_mismatch_on_load(stub_model):
    stub_model.dims = 768
    with pytest.raises(ValueError, match="expected 4, got 768"):
        make_provider()


def test_model_errors_are_wrapped(stub_model):
    provider = make_provider()
    stub_model.fail = True
    with pytest.raises(ModelCallError, match="CUDA out of memory"):
        provider.run("psu")


def test_empty_text(stub_model):
    with pytest.raises(ValueError):
        make_provider().run("   ")


def test_protocol_and_properties(stub_model):
    provider = make_provider(device="cpu")
    assert isinstance(provider, EmbeddingProvider)
    assert provider.dims == 4
    assert provider.model_id == "thenlper/gte-small"
    assert provider.provider_name == "sentence-transformers"
    assert provider.embed_query("psu") == [1.0, 0.0, 0.0, 0.0]


def test_l2_normalize_zero_vector():
    with pytest.raises(ModelCallError):
        l2_normalize(np.zeros(3))


def test_factory_resolves_alias(stub_model):
    config = EmbeddingConfig(provider="st", model_name="thenlper/gte-small", dims=4)
    provider = create_embedding_provider(config)
    assert isinstance(provider, SentenceTransformersProvider)


def test_factory_unknown_provider():
    with pytest.raises(ValueError, match="Unknown embedding provider"):
        create_embedding_provider(EmbeddingConfig(provider="word2vec"))
