import math

import pytest

from sensorlog.query import SimilaritySearch
from sensorlog.shared.config import Config
from sensorlog.storage.memory import rank_by_inner_product

TABLE = "measurements"


@pytest.fixture()
def config_2d():
    return Config(embedding={"dims": 2}, search={"match_threshold": 0.5})


@pytest.fixture()
def embedded_store(store, log):
    vectors = {
        "exact": [1.0, 0.0],
        "close": [0.8, 0.6],
        "edge": [0.5, math.sqrt(0.75)],
        "far": [0.0, 1.0],
    }
    rows = [
        {"log_id": log.id, "sensor_name": name, "embedding": None}
        for name in vectors
    ]
    ids = store.insert_measurements(rows)
    for row_id, vector in zip(ids, vectors.values()):
        store.write_embedding(TABLE, row_id, "embedding", vector, "completed")
    # one row still waiting for its embedding
    store.insert_measurements([{"log_id": log.id, "sensor_name": "pending", "embedding": None}])
    return store


class TestSearch:
    def test_strictly_above_threshold_most_similar_first(self, embedded_store, config_2d):
        hits = SimilaritySearch(embedded_store, config=config_2d).search([1.0, 0.0])

        assert [h.measurement["sensor_name"] for h in hits] == ["exact", "close"]
        assert hits[0].similarity == pytest.approx(1.0)
        assert hits[1].similarity == pytest.approx(0.8)

    def test_threshold_argument_overrides_config(self, embedded_store, config_2d):
        search = SimilaritySearch(embedded_store, config=config_2d)
        hits = search.search([1.0, 0.0], threshold=-1.0)
        assert [h.measurement["sensor_name"] for h in hits] == [
            "exact",
            "close",
            "edge",
            "far",
        ]
        similarities = [h.similarity for h in hits]
        assert similarities == sorted(similarities, reverse=True)

    def test_no_match(self, embedded_store, config_2d):
        search = SimilaritySearch(embedded_store, config=config_2d)
        assert search.search([0.0, 1.0], threshold=0.99) == []

    def test_non_unit_query_is_rescaled(self, embedded_store, config_2d):
        search = SimilaritySearch(embedded_store, config=config_2d)
        hits = search.search([3.0, 0.0])
        assert hits[0].similarity == pytest.approx(1.0)

    def test_wrong_dimension(self, embedded_store, config_2d):
        search = SimilaritySearch(embedded_store, config=config_2d)
        with pytest.raises(ValueError, match="2 dimensions"):
            search.search([1.0, 0.0, 0.0])

    def test_zero_query(self, embedded_store, config_2d):
        with pytest.raises(ValueError, match="zeros"):
            SimilaritySearch(embedded_store, config=config_2d).search([0.0, 0.0])

    def test_hit_carries_row(self, embedded_store, config_2d):
        hit = SimilaritySearch(embedded_store, config=config_2d).search([1.0, 0.0])[0]
        assert hit.id == hit.measurement["id"]
        assert hit.measurement["embedding"] == [1.0, 0.0]


def test_search_text_uses_provider(store, log, provider, config):
    ids = store.insert_measurements([{"log_id": log.id, "embedding": None}])
    # the fake provider returns the one-hot vector for index 1 on its first call
    vector = [0.0] * 384
    vector[1] = 1.0
    store.write_embedding(TABLE, ids[0], "embedding", vector, "completed")

    hits = SimilaritySearch(store, provider=provider, config=config).search_text("psu input")
    assert [h.id for h in hits] == ids
    assert provider.calls == ["psu input"]


def test_search_text_requires_provider(store, config):
    with pytest.raises(ValueError, match="provider"):
        SimilaritySearch(store, config=config).search_text("psu input")


def test_rank_ties_break_by_id():
    rows = [
        {"id": 3, "embedding": [1.0, 0.0]},
        {"id": 1, "embedding": [1.0, 0.0]},
        {"id": 2, "embedding": None},
    ]
    hits = rank_by_inner_product([1.0, 0.0], rows, 0.0)
    assert [h.id for h in hits] == [1, 3]
