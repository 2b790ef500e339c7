"""HTTP client for OpenAI-compatible embedding endpoints."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from .config import EmbeddingConfig

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Embed batches of text through a ``/v1/embeddings`` style endpoint."""

    def __init__(self, config: EmbeddingConfig, *, session: Optional[requests.Session] = None) -> None:
        if config.batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        self.config = config
        self.http = session or requests.Session()

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Return one embedding per input text, preserving input order."""
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.config.batch_size):
            batch = texts[start : start + self.config.batch_size]
            vectors.extend(self._embed_batch(batch))
        return vectors

    def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        payload: Dict[str, Any] = {"model": self.config.model, "input": batch}
        payload.update(self.config.model_kwargs)
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        start = time.perf_counter()
        response = self.http.post(
            self.config.endpoint,
            json=payload,
            headers=headers,
            timeout=self.config.request_timeout,
        )
        response.raise_for_status()
        data = response.json().get("data") or []
        if len(data) != len(batch):
            raise RuntimeError(
                f"Embedding service returned {len(data)} vector(s) for {len(batch)} input(s)"
            )
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        logger.debug(
            "Embedded batch of %d text(s) in %.2f seconds", len(batch), time.perf_counter() - start
        )
        return [item["embedding"] for item in ordered]
