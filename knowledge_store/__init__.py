"""Helpers for building and querying the persisted knowledge index."""

from .config import EmbeddingConfig
from .embedding_client import EmbeddingClient
from .store import KnowledgeStore

__all__ = ["EmbeddingClient", "EmbeddingConfig", "KnowledgeStore"]
