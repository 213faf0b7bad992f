import numpy as np
import pytest
from django.core.exceptions import ImproperlyConfigured

from django_ai_agents.contrib.index.schema import EmbeddedChunk
from django_ai_agents.contrib.index.storage import InMemoryProvider
from django_ai_agents.contrib.index.storage.faiss_ivf import FaissProvider
from django_ai_agents.exceptions import IndexPreconditionError


def make_items(count, dimensions=4, seed=7):
    rng = np.random.default_rng(seed)
    vectors = rng.normal(size=(count, dimensions))
    return [
        EmbeddedChunk(
            id=f"doc{i}:0",
            document_id=f"doc{i}",
            sequence=0,
            content=f"document {i}",
            metadata={"parity": "even" if i % 2 == 0 else "odd"},
            vector=tuple(float(value) for value in vector),
        )
        for i, vector in enumerate(vectors)
    ]


def query(provider, vector, n, **filters):
    return list(provider.objects.filter(embedding=list(vector), **filters)[:n])


def test_faiss_provider_is_approximate():
    provider = FaissProvider(dimensions=4, nlist=2)
    assert not provider.exact
    assert provider.min_corpus_size == 2


def test_faiss_nlist_defaults_to_setting(settings):
    settings.AI_AGENTS = {"FAISS_NLIST": 5}
    assert FaissProvider(dimensions=4).min_corpus_size == 5


def test_query_below_minimum_corpus_raises():
    provider = FaissProvider(dimensions=4, nlist=4)
    provider.add(make_items(3))

    with pytest.raises(IndexPreconditionError):
        query(provider, [1.0, 0.0, 0.0, 0.0], 2)


def test_delete_below_minimum_corpus_raises_again():
    provider = FaissProvider(dimensions=4, nlist=2)
    provider.add(make_items(3))
    assert len(query(provider, [1.0, 0.0, 0.0, 0.0], 2)) == 2

    provider.delete(["doc0:0", "doc1:0"])
    with pytest.raises(IndexPreconditionError):
        query(provider, [1.0, 0.0, 0.0, 0.0], 2)


@pytest.mark.parametrize("metric", ["cosine", "dot", "euclidean"])
def test_full_probe_matches_exact_search(metric):
    items = make_items(40)
    approximate = FaissProvider(dimensions=4, nlist=4, nprobe=4, metric=metric)
    exact = InMemoryProvider(metric=metric)
    approximate.add(items)
    exact.add(items)

    vector = [0.3, -1.0, 0.5, 2.0]
    approximate_results = query(approximate, vector, 5)
    exact_results = query(exact, vector, 5)

    assert [result.id for result in approximate_results] == [
        result.id for result in exact_results
    ]
    assert [result.score for result in approximate_results] == pytest.approx(
        [result.score for result in exact_results], abs=1e-4
    )


def test_query_returns_all_when_fewer_than_n():
    provider = FaissProvider(dimensions=4, nlist=2, nprobe=2)
    provider.add(make_items(6))
    assert len(query(provider, [1.0, 0.0, 0.0, 0.0], 50)) == 6


def test_query_filters_on_metadata():
    provider = FaissProvider(dimensions=4, nlist=2, nprobe=2)
    provider.add(make_items(20))

    results = query(provider, [1.0, 0.0, 0.0, 0.0], 4, parity="odd")

    assert len(results) == 4
    assert all(result.item.metadata["parity"] == "odd" for result in results)


def test_add_replaces_existing_id():
    provider = FaissProvider(dimensions=4, nlist=2, nprobe=2)
    items = make_items(4)
    provider.add(items)
    provider.add(make_items(1, seed=99))

    assert len(provider) == 4
    assert provider.snapshot.items["doc0:0"].vector != items[0].vector


@pytest.mark.parametrize(
    "kwargs",
    [
        {"dimensions": 4, "nlist": 0},
        {"dimensions": 4, "nlist": 2, "nprobe": 3},
        {"dimensions": 0, "nlist": 2},
        {"dimensions": 4, "nlist": 2, "metric": "hamming"},
    ],
)
def test_invalid_configuration(kwargs):
    with pytest.raises(ImproperlyConfigured):
        FaissProvider(**kwargs)
