"""Assemble the message list sent to the completion provider for one turn.

The assembler merges incoming messages with stored history, picks the latest
user message as the anchor and runs at most one augmentation for it: a tool
call when the anchor matches an intent rule, otherwise a knowledge-base
search.  The augmentation result becomes a single system message at the front
of the list.  Augmentation failures are logged and the turn continues with
the plain merged conversation.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .intents import IntentRule, RunKnowledgeSearch, RunTool, classify_intent
from .session_store import Turn
from .telemetry import ChatTelemetry
from .tools import KnowledgeSearch, ToolExecutor, ToolFailure, ToolSuccess

logger = logging.getLogger(__name__)

PATH_TOOL = "tool"
PATH_KNOWLEDGE = "knowledge"
PATH_NONE = "none"

KNOWLEDGE_PREAMBLE = (
    "You are a helpful AI assistant with access to a knowledge base. Use the "
    "following relevant information to help answer the user's question. If the "
    "information is not relevant, you can provide a general response."
)

Message = Dict[str, str]


@dataclass
class AssembledContext:
    messages: List[Message]
    path: str = PATH_NONE
    augmented: bool = False
    anchor: Optional[str] = None
    tool_name: Optional[str] = None
    knowledge_hits: int = 0


def normalise_messages(messages: Any) -> List[Message]:
    """Validate the incoming message list and return plain role/content dicts."""
    if not isinstance(messages, (list, tuple)) or not messages:
        raise ValueError("Messages array is required")
    normalised: List[Message] = []
    for idx, message in enumerate(messages):
        if not isinstance(message, Mapping):
            raise ValueError(f"messages[{idx}] must be an object with role and content")
        role = message.get("role")
        content = message.get("content")
        if role not in ("user", "assistant", "system") or not isinstance(content, str):
            raise ValueError(f"messages[{idx}] has an invalid role or content")
        normalised.append({"role": role, "content": content})
    return normalised


def merge_history(history: Sequence[Turn], incoming: Sequence[Message]) -> List[Message]:
    """Concatenate history and incoming messages, skipping a resent last turn."""
    merged = [turn.as_message() for turn in history]
    if merged and incoming:
        last, first = merged[-1], incoming[0]
        if last["role"] == first["role"] and last["content"] == first["content"]:
            incoming = incoming[1:]
    merged.extend({"role": m["role"], "content": m["content"]} for m in incoming)
    return merged


def find_anchor(messages: Sequence[Message]) -> Optional[str]:
    for message in reversed(messages):
        if message["role"] == "user":
            return message["content"]
    return None


def format_tool_context(data: Any) -> str:
    return (
        "Tool executed successfully. Result:\n"
        f"{json.dumps(data, indent=2, default=str)}\n\n"
        "Use this information to answer the user's question."
    )


def format_knowledge_context(results: Sequence[Mapping[str, Any]]) -> str:
    blocks = [
        f"[Knowledge {i}] (relevance: {float(r.get('score', 0.0)):.2f})\n{r.get('text', '')}"
        for i, r in enumerate(results, start=1)
    ]
    return f"{KNOWLEDGE_PREAMBLE}\n\n" + "\n\n".join(blocks)


class ContextAssembler:
    """Decides the augmentation path and builds the final message list."""

    def __init__(
        self,
        tools: ToolExecutor,
        knowledge: Optional[KnowledgeSearch],
        rules: Sequence[IntentRule],
        *,
        top_k: int = 3,
        enable_knowledge: bool = True,
        telemetry: Optional[ChatTelemetry] = None,
    ) -> None:
        self.tools = tools
        self.knowledge = knowledge
        self.rules = tuple(rules)
        self.top_k = top_k
        self.enable_knowledge = enable_knowledge
        self.telemetry = telemetry or ChatTelemetry()

    def assemble(
        self,
        incoming: Sequence[Mapping[str, Any]],
        history: Sequence[Turn],
        *,
        user_id: str = "anonymous",
    ) -> AssembledContext:
        messages = normalise_messages(incoming)
        merged = merge_history(history, messages)
        anchor = find_anchor(merged)
        logger.info(
            "User %s: %d history + %d new = %d total",
            user_id,
            len(history),
            len(messages),
            len(merged),
        )

        action = classify_intent(anchor, self.rules)
        if isinstance(action, RunTool):
            return self._with_tool(action, merged, anchor, user_id)
        if isinstance(action, RunKnowledgeSearch) and self.enable_knowledge and self.knowledge is not None:
            return self._with_knowledge(action.query, merged, anchor, user_id)
        return AssembledContext(messages=merged, path=PATH_NONE, anchor=anchor)

    def _with_tool(self, action: RunTool, merged: List[Message], anchor: Optional[str], user_id: str) -> AssembledContext:
        logger.info("Executing tool %s for user %s", action.name, user_id)
        start = time.perf_counter()
        try:
            result = self.tools.execute(action.name, dict(action.arguments))
        except Exception as exc:
            logger.exception("Tool %s failed; continuing without tool context", action.name)
            result = ToolFailure(str(exc))
        elapsed_ms = (time.perf_counter() - start) * 1000

        context = AssembledContext(messages=merged, path=PATH_TOOL, anchor=anchor, tool_name=action.name)
        if isinstance(result, ToolSuccess):
            self.telemetry.track_tool_execution(action.name, elapsed_ms, True)
            self.telemetry.track_feature_usage("tool_call", user_id)
            context.messages = [{"role": "system", "content": format_tool_context(result.data)}] + merged
            context.augmented = True
            logger.info("Tool result added to context")
        else:
            self.telemetry.track_tool_execution(action.name, elapsed_ms, False, result.message)
        return context

    def _with_knowledge(self, query: str, merged: List[Message], anchor: Optional[str], user_id: str) -> AssembledContext:
        context = AssembledContext(messages=merged, path=PATH_KNOWLEDGE, anchor=anchor)
        try:
            results = self.knowledge.search(query, top_k=self.top_k)  # type: ignore[union-attr]
        except Exception as exc:
            logger.exception("RAG search failed, continuing without context")
            self.telemetry.track_rag_usage(0, 0.0, False)
            self.telemetry.track_error("RAG_FAILURE", str(exc), user_id=user_id)
            return context

        if not results:
            return context

        context.messages = [{"role": "system", "content": format_knowledge_context(results)}] + merged
        context.augmented = True
        context.knowledge_hits = len(results)
        logger.info("RAG: found %d relevant document(s)", len(results))
        self.telemetry.track_rag_usage(len(results), float(results[0].get("score", 0.0)), True)
        self.telemetry.track_feature_usage("rag_search", user_id)
        return context
