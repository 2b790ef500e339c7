"""FAISS-backed knowledge base for retrieval-augmented chat.

Documents are embedded through :class:`~knowledge_store.embedding_client.EmbeddingClient`,
L2-normalised and added to an inner-product index so scores are cosine
similarities.  The index and document metadata are persisted side by side as
``index.faiss`` and ``metadata.json`` in the store directory and reloaded on
start.  Extensive logging is used to aid observability.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

try:
    import faiss  # type: ignore
except ImportError as exc:  # pragma: no cover - runtime dependency
    raise RuntimeError(
        "The faiss library is required for the knowledge store. Install faiss-cpu via pip or conda."
    ) from exc

from .config import EmbeddingConfig
from .embedding_client import EmbeddingClient

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.faiss"
METADATA_FILENAME = "metadata.json"


class Embedder(Protocol):
    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        ...


class KnowledgeStore:
    """Ingest documents and run similarity search over them."""

    def __init__(
        self,
        store_dir: str,
        *,
        embedding_config: Optional[EmbeddingConfig] = None,
        embedder: Optional[Embedder] = None,
    ) -> None:
        """Initialise the store.

        Parameters
        ----------
        store_dir:
            Directory holding ``index.faiss`` and ``metadata.json``.  It is
            created on the first ingest when missing.
        embedding_config:
            Settings for the default :class:`EmbeddingClient`.  Ignored when
            ``embedder`` is given.
        embedder:
            Any object exposing ``embed_documents(texts)``.
        """
        self.store_dir = Path(store_dir)
        self.index_path = self.store_dir / INDEX_FILENAME
        self.metadata_path = self.store_dir / METADATA_FILENAME
        self.embedder: Embedder = embedder or EmbeddingClient(embedding_config or EmbeddingConfig())
        self._index: Optional[Any] = None
        self._metadata: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        logger.debug("KnowledgeStore initialised for store at %s", self.store_dir)

    def __len__(self) -> int:
        return len(self._metadata)

    def load(self) -> "KnowledgeStore":
        """Load a persisted index if one exists; an absent store stays empty."""
        if not self.index_path.exists() or not self.metadata_path.exists():
            logger.info("No persisted knowledge index at %s; starting empty", self.store_dir)
            return self

        start_time = time.perf_counter()
        logger.info("Loading FAISS index from %s", self.index_path)
        index = faiss.read_index(str(self.index_path))

        logger.info("Loading metadata from %s", self.metadata_path)
        with self.metadata_path.open("r", encoding="utf-8") as f:
            metadata = json.load(f)
        if not isinstance(metadata, list):
            raise ValueError("metadata.json must contain a list of metadata entries")

        if index.ntotal != len(metadata):
            logger.warning(
                "Knowledge store mismatch: index has %d vectors, metadata contains %d entries",
                index.ntotal,
                len(metadata),
            )
        with self._lock:
            self._index = index
            self._metadata = metadata
        logger.info("Knowledge store loaded in %.2f seconds", time.perf_counter() - start_time)
        return self

    def ingest(self, documents: Sequence[Dict[str, Any]]) -> int:
        """Embed and index ``documents`` (``{id?, text, metadata?}``); return the count."""
        if not documents:
            raise ValueError("documents must not be empty")
        entries: List[Dict[str, Any]] = []
        for idx, doc in enumerate(documents):
            text = doc.get("text") if isinstance(doc, dict) else None
            if not isinstance(text, str) or not text.strip():
                raise ValueError(f"documents[{idx}].text must be a non-empty string")
            entries.append(
                {
                    "id": str(doc.get("id") or uuid.uuid4()),
                    "text": text,
                    "metadata": dict(doc.get("metadata") or {}),
                }
            )

        logger.info("Embedding %d document(s) for ingestion", len(entries))
        vectors = self._to_matrix(self.embedder.embed_documents([e["text"] for e in entries]))
        if vectors.shape[0] != len(entries):
            raise RuntimeError("Embedding service returned an unexpected number of vectors")

        with self._lock:
            if self._index is None:
                index = faiss.IndexFlatIP(vectors.shape[1])
            elif vectors.shape[1] != self._index.d:
                raise ValueError(
                    f"Embedding dimension {vectors.shape[1]} does not match index dimension {self._index.d}"
                )
            else:
                index = faiss.clone_index(self._index)
            index.add(vectors)
            metadata = self._metadata + entries
            # Swap in only once both files are written.
            self._persist(index, metadata)
            self._index = index
            self._metadata = metadata
        logger.info("Ingested %d document(s); store now holds %d", len(entries), len(self._metadata))
        return len(entries)

    def search(self, query: str, top_k: int = 3) -> List[Dict[str, Any]]:
        """Return up to ``top_k`` documents ordered by descending relevance."""
        if not query or not query.strip():
            raise ValueError("Query text must not be empty")
        if top_k <= 0:
            raise ValueError("top_k must be a positive integer")
        if self._index is None or self._index.ntotal == 0:
            logger.debug("Knowledge store is empty; skipping search")
            return []

        embed_start = time.perf_counter()
        vector = self._to_matrix(self.embedder.embed_documents([query]))
        logger.debug("Embedding completed in %.2f seconds", time.perf_counter() - embed_start)
        if vector.shape[1] != self._index.d:
            raise ValueError(
                f"Embedding dimension {vector.shape[1]} does not match index dimension {self._index.d}"
            )

        with self._lock:
            search_k = min(top_k, self._index.ntotal)
            search_start = time.perf_counter()
            scores, ids = self._index.search(vector[:1], search_k)
            logger.info(
                "FAISS search for %d neighbour(s) completed in %.3f seconds",
                search_k,
                time.perf_counter() - search_start,
            )
            results: List[Dict[str, Any]] = []
            for idx, score in zip(ids[0], scores[0]):
                if idx < 0 or idx >= len(self._metadata):
                    continue
                entry = self._metadata[idx]
                results.append(
                    {
                        "id": entry.get("id"),
                        "score": min(1.0, max(0.0, float(score))),
                        "text": entry.get("text", ""),
                        "metadata": entry.get("metadata", {}),
                    }
                )
        logger.debug("Search returned %d result(s)", len(results))
        return results

    def _persist(self, index: Any, metadata: List[Dict[str, Any]]) -> None:
        self.store_dir.mkdir(parents=True, exist_ok=True)
        faiss.write_index(index, str(self.index_path))
        with self.metadata_path.open("w", encoding="utf-8") as f:
            json.dump(metadata, f, ensure_ascii=False)

    @staticmethod
    def _to_matrix(embeddings: List[List[float]]) -> np.ndarray:
        if not embeddings or not embeddings[0]:
            raise RuntimeError("Embedding service returned no vectors")
        matrix = np.array(embeddings, dtype="float32")
        if matrix.ndim != 2:
            raise ValueError("Embeddings must all share the same dimension")
        faiss.normalize_L2(matrix)
        return matrix
