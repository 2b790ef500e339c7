"""High level orchestration for chat with streaming, memory, and context."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .config import ChatConfig
from .context import AssembledContext, ContextAssembler
from .intents import rules_from_config
from .llm_client import ChatLLMClient
from .session_store import SessionStore
from .telemetry import ChatTelemetry
from .tools import KnowledgeSearch, ToolExecutor

logger = logging.getLogger(__name__)

SSE_DONE = "data: [DONE]\n\n"


def sse_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@dataclass
class PreparedTurn:
    user_id: str
    context: AssembledContext
    started_at: float = field(default_factory=time.perf_counter)


class ChatService:
    """Core chat engine used by the API and by direct Python consumers."""

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        *,
        store: Optional[SessionStore] = None,
        knowledge: Optional[KnowledgeSearch] = None,
        client: Optional[ChatLLMClient] = None,
        tools: Optional[ToolExecutor] = None,
        telemetry: Optional[ChatTelemetry] = None,
    ) -> None:
        self.config = config or ChatConfig()
        self.store = store or SessionStore(max_non_system_turns=self.config.max_history_messages)
        self.knowledge = knowledge
        self.client = client or ChatLLMClient(self.config.llm)
        self.telemetry = telemetry or ChatTelemetry()
        self.tools = tools or ToolExecutor(knowledge, request_timeout=self.config.tool_timeout)
        self.assembler = ContextAssembler(
            self.tools,
            knowledge,
            rules_from_config(self.config),
            top_k=self.config.context_top_k,
            enable_knowledge=self.config.enable_context,
            telemetry=self.telemetry,
        )

    def prepare_turn(self, user_id: str, messages: Sequence[Dict[str, Any]]) -> PreparedTurn:
        """Validate input, read history and assemble the prompt for one turn.

        Raises ``ValueError`` for a malformed message list and
        :class:`~assistant_chat.llm_client.ConfigurationError` when the
        completion provider has no credential.  Neither touches the store.
        """
        if not isinstance(messages, (list, tuple)) or not messages:
            raise ValueError("Messages array is required")
        self.client.ensure_configured()

        started = time.perf_counter()
        history = self.store.history(user_id, limit=self.config.history_window)
        context = self.assembler.assemble(messages, history, user_id=user_id)
        logger.info(
            "Assembled %d message(s) for user %s (path=%s, augmented=%s)",
            len(context.messages),
            user_id,
            context.path,
            context.augmented,
        )
        return PreparedTurn(user_id=user_id, context=context, started_at=started)

    def stream_reply(self, turn: PreparedTurn, *, model: Optional[str] = None) -> Iterator[str]:
        """Return an iterator of SSE frames for the assistant reply.

        The upstream request is opened eagerly; the exchange is written to the
        session store only once the stream has been fully consumed.
        """
        model_name = model or self.config.llm.model
        try:
            deltas = self.client.stream_completion(
                turn.context.messages, model=model_name, model_kwargs=self.config.model_kwargs
            )
        except Exception as exc:
            self._track_failure(turn, model_name, exc)
            raise

        def generator() -> Iterator[str]:
            reply = ""
            try:
                for token in deltas:
                    reply += token
                    yield sse_frame({"content": token})
            except Exception as exc:
                logger.exception("Completion stream for user %s failed mid-response", turn.user_id)
                self._track_failure(turn, model_name, exc)
                raise
            yield SSE_DONE

            self._record_exchange(turn, reply)
            duration_ms = (time.perf_counter() - turn.started_at) * 1000
            self.telemetry.track_response_time(duration_ms, model_name, True)
            self.telemetry.track_feature_usage("chat", turn.user_id)

        return generator()

    def complete_reply(self, turn: PreparedTurn, *, model: Optional[str] = None) -> Dict[str, Any]:
        """Return the provider's full completion and record the exchange."""
        model_name = model or self.config.llm.model
        try:
            data = self.client.complete(
                turn.context.messages, model=model_name, model_kwargs=self.config.model_kwargs
            )
        except Exception as exc:
            self._track_failure(turn, model_name, exc)
            raise

        self._record_exchange(turn, self.client.extract_content(data))
        duration_ms = (time.perf_counter() - turn.started_at) * 1000
        self.telemetry.track_response_time(duration_ms, model_name, True)
        self.telemetry.track_feature_usage("chat", turn.user_id)
        usage = data.get("usage") or {}
        if usage:
            self.telemetry.track_token_usage(
                int(usage.get("prompt_tokens", 0)), int(usage.get("completion_tokens", 0)), model_name
            )
        return data

    def get_history(self, user_id: str, limit: Optional[int] = None) -> Dict[str, Any]:
        turns = self.store.history(user_id, limit=limit)
        return {
            "user_id": user_id,
            "messages": [
                {"role": t.role, "content": t.content, "timestamp": t.timestamp} for t in turns
            ],
        }

    def clear_history(self, user_id: str) -> None:
        self.store.clear(user_id)

    def ingest(self, documents: List[Dict[str, Any]], *, user_id: str = "anonymous") -> int:
        """Add documents to the knowledge base and return how many were stored."""
        if not isinstance(documents, list) or not documents:
            raise ValueError("Documents array is required and must not be empty")
        if self.knowledge is None or not hasattr(self.knowledge, "ingest"):
            raise RuntimeError("Knowledge base is not configured")

        start = time.perf_counter()
        try:
            count = self.knowledge.ingest(documents)  # type: ignore[attr-defined]
        except Exception:
            self.telemetry.track_ingestion(0, False, (time.perf_counter() - start) * 1000)
            raise
        self.telemetry.track_ingestion(count, True, (time.perf_counter() - start) * 1000)
        self.telemetry.track_feature_usage("knowledge_ingest", user_id)
        return count

    def _record_exchange(self, turn: PreparedTurn, reply: str) -> None:
        if turn.context.anchor is not None:
            self.store.append(turn.user_id, "user", turn.context.anchor)
        if reply:
            self.store.append(turn.user_id, "assistant", reply)

    def _track_failure(self, turn: PreparedTurn, model: str, exc: Exception) -> None:
        duration_ms = (time.perf_counter() - turn.started_at) * 1000
        self.telemetry.track_response_time(duration_ms, model, False)
        self.telemetry.track_error("COMPLETION_FAILURE", str(exc), user_id=turn.user_id)
