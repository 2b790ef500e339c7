from __future__ import annotations

import json

import pytest

from knowledge_store import EmbeddingClient, EmbeddingConfig, KnowledgeStore

VOCAB = ["deploy", "vacation", "weather", "python"]


class BagOfWordsEmbedder:
    """Deterministic embedder counting vocabulary words."""

    def __init__(self, dims=len(VOCAB)):
        self.dims = dims
        self.calls = 0

    def embed_documents(self, texts):
        self.calls += 1
        vectors = []
        for text in texts:
            lowered = text.lower()
            vec = [float(lowered.count(word)) for word in VOCAB][: self.dims]
            vec += [0.0] * (self.dims - len(vec))
            vec[-1] += 0.01
            vectors.append(vec)
        return vectors


def _docs():
    return [
        {"id": "a", "text": "How to deploy the service", "metadata": {"team": "ops"}},
        {"text": "Vacation policy for employees"},
        {"id": "c", "text": "Python style guide"},
    ]


def test_empty_store_returns_no_results(tmp_path):
    store = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder()).load()
    assert store.search("deploy") == []


def test_ingest_and_search_orders_by_score(tmp_path):
    store = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder())
    assert store.ingest(_docs()) == 3

    results = store.search("deploy steps", top_k=2)

    assert results[0]["id"] == "a"
    assert results[0]["metadata"] == {"team": "ops"}
    assert len(results) == 2
    assert results[0]["score"] >= results[1]["score"]
    assert all(0.0 <= r["score"] <= 1.0 for r in results)


def test_ingest_assigns_ids_and_persists(tmp_path):
    store = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder())
    store.ingest(_docs())

    metadata = json.loads((tmp_path / "metadata.json").read_text())
    assert (tmp_path / "index.faiss").exists()
    assert len(metadata) == 3
    assert metadata[1]["id"]

    reloaded = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder()).load()
    assert len(reloaded) == 3
    assert reloaded.search("vacation", top_k=1)[0]["text"] == "Vacation policy for employees"


def test_dimension_mismatch_rejected(tmp_path):
    store = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder())
    store.ingest(_docs())
    store.embedder = BagOfWordsEmbedder(dims=2)
    with pytest.raises(ValueError):
        store.ingest([{"text": "deploy"}])


@pytest.mark.parametrize("documents", [[], [{"text": "  "}], [{"id": "x"}]])
def test_ingest_validates_documents(tmp_path, documents):
    store = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder())
    with pytest.raises(ValueError):
        store.ingest(documents)


def test_search_validates_arguments(tmp_path):
    store = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder())
    with pytest.raises(ValueError):
        store.search("   ")
    with pytest.raises(ValueError):
        store.search("deploy", top_k=0)


class FakeEmbeddingResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self._payload


class FakeEmbeddingHTTP:
    def __init__(self):
        self.posts = []

    def post(self, url, json=None, **kwargs):
        self.posts.append(json)
        data = [{"index": i, "embedding": [float(i), 1.0]} for i in range(len(json["input"]))]
        return FakeEmbeddingResponse({"data": list(reversed(data))})


def test_embedding_client_batches_and_orders():
    http = FakeEmbeddingHTTP()
    client = EmbeddingClient(EmbeddingConfig(batch_size=2, model="emb"), session=http)

    vectors = client.embed_documents(["a", "b", "c"])

    assert [p["input"] for p in http.posts] == [["a", "b"], ["c"]]
    assert http.posts[0]["model"] == "emb"
    assert vectors == [[0.0, 1.0], [1.0, 1.0], [0.0, 1.0]]


def test_failed_persist_leaves_store_unchanged(tmp_path, monkeypatch):
    store = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder())
    store.ingest([{"id": "first", "text": "Python style guide"}])

    def fail(index, metadata):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_persist", fail)
    with pytest.raises(OSError):
        store.ingest(_docs())

    assert len(store) == 1
    assert [r["id"] for r in store.search("deploy python", top_k=3)] == ["first"]


def test_failed_first_ingest_keeps_store_empty(tmp_path, monkeypatch):
    store = KnowledgeStore(str(tmp_path), embedder=BagOfWordsEmbedder())

    def fail(index, metadata):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_persist", fail)
    with pytest.raises(OSError):
        store.ingest(_docs())

    assert len(store) == 0
    assert store.search("deploy") == []
