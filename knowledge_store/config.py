"""Configuration for the embedding endpoint used by the knowledge store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class EmbeddingConfig:
    endpoint: str = "http://localhost:8001/v1/embeddings"
    model: str = "text-embedding-3-small"
    batch_size: int = 32
    request_timeout: int = 60
    api_key: Optional[str] = None
    model_kwargs: Dict[str, Any] = field(default_factory=dict)
