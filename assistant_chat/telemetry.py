"""In-process telemetry for chat, retrieval and tool usage.

Events are logged through :mod:`logging` and aggregated in memory so the
``/api/metrics`` endpoint can report counters and latency summaries.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ChatTelemetry:
    """Collects counters and latency aggregates."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {}
        self._latencies: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def record_latency(self, operation: str, duration_ms: float) -> None:
        with self._lock:
            entry = self._latencies.setdefault(
                operation, {"count": 0, "sum": 0.0, "min": float("inf"), "max": 0.0}
            )
            entry["count"] += 1
            entry["sum"] += duration_ms
            entry["min"] = min(entry["min"], duration_ms)
            entry["max"] = max(entry["max"], duration_ms)

    def track_response_time(self, duration_ms: float, model: str, success: bool) -> None:
        self.record_latency("ai_response", duration_ms)
        self.increment("ai_response.success" if success else "ai_response.failure")
        logger.info("AI response model=%s success=%s duration=%.0fms", model, success, duration_ms)

    def track_token_usage(self, prompt_tokens: int, completion_tokens: int, model: str) -> None:
        self.increment("tokens.prompt", prompt_tokens)
        self.increment("tokens.completion", completion_tokens)
        self.increment("tokens.total", prompt_tokens + completion_tokens)
        logger.info(
            "Token usage model=%s prompt=%d completion=%d", model, prompt_tokens, completion_tokens
        )

    def track_rag_usage(self, documents: int, top_score: float, success: bool) -> None:
        self.increment("rag.success" if success else "rag.failure")
        self.increment("rag.documents", documents)
        logger.info(
            "RAG retrieval documents=%d top_score=%.2f success=%s", documents, top_score, success
        )

    def track_tool_execution(self, tool_name: str, duration_ms: float, success: bool, error: Optional[str] = None) -> None:
        self.record_latency(f"tool.{tool_name}", duration_ms)
        self.increment(f"tool.{tool_name}.{'success' if success else 'failure'}")
        if error:
            logger.warning("Tool %s failed after %.0fms: %s", tool_name, duration_ms, error)

    def track_feature_usage(self, feature: str, user_id: str) -> None:
        self.increment(f"feature.{feature}")
        logger.debug("Feature %s used by %s", feature, user_id)

    def track_ingestion(self, documents: int, success: bool, duration_ms: float) -> None:
        self.record_latency("knowledge_ingest", duration_ms)
        self.increment("ingest.documents", documents)
        self.increment("ingest.success" if success else "ingest.failure")

    def track_error(self, error_type: str, message: str, **context: Any) -> None:
        self.increment(f"error.{error_type}")
        logger.error("AI error %s: %s %s", error_type, message, context or "")

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            latencies = {
                name: {
                    "count": int(entry["count"]),
                    "avg": entry["sum"] / entry["count"] if entry["count"] else 0.0,
                    "min": entry["min"] if entry["count"] else 0.0,
                    "max": entry["max"],
                }
                for name, entry in self._latencies.items()
            }
            return {"counters": dict(self._counters), "latency_ms": latencies}
