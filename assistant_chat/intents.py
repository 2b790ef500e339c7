"""Keyword intent detection for the latest user message.

Classification is a pure function: the anchor text is lower-cased and
checked against an ordered tuple of :class:`IntentRule` objects.  The first
rule whose keywords match and whose builder returns an action wins; when no
rule fires the caller falls back to a knowledge-base search.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from .config import ChatConfig


@dataclass(frozen=True)
class NoAction:
    """Nothing to augment (no user turn to anchor on)."""


@dataclass(frozen=True)
class RunTool:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RunKnowledgeSearch:
    query: str


IntentAction = Union[NoAction, RunTool, RunKnowledgeSearch]


@dataclass(frozen=True)
class IntentRule:
    name: str
    keywords: Tuple[str, ...]
    build: Callable[[str], Optional[IntentAction]]

    def matches(self, lowered: str) -> bool:
        return any(keyword in lowered for keyword in self.keywords)


_KNOWLEDGE_TRIGGER_RE = re.compile(
    r"(?:search|find in) knowledge\s*(?:for|about)?", re.IGNORECASE
)


def strip_knowledge_trigger(text: str) -> str:
    """Remove the 'search knowledge for' style prefix from an explicit search."""
    stripped = _KNOWLEDGE_TRIGGER_RE.sub("", text, count=1).strip()
    return stripped or text.strip()


def build_rules(
    *,
    weather_api_url: str,
    news_api_url: Optional[str] = None,
) -> Tuple[IntentRule, ...]:
    """Return the ordered rule set used by :func:`classify_intent`."""

    def call_url(url: Optional[str]) -> Callable[[str], Optional[IntentAction]]:
        def build(_: str) -> Optional[IntentAction]:
            if not url:
                return None
            return RunTool("call_api", {"url": url, "method": "GET"})

        return build

    return (
        IntentRule(
            name="profile",
            keywords=("my profile", "my email", "my user"),
            build=lambda text: RunTool("query_database", {"query": text}),
        ),
        IntentRule(
            name="knowledge",
            keywords=("search knowledge", "find in knowledge"),
            build=lambda text: RunTool(
                "search_knowledge", {"query": strip_knowledge_trigger(text)}
            ),
        ),
        IntentRule(name="weather", keywords=("weather",), build=call_url(weather_api_url)),
        # Without a configured feed, news questions fall through to the knowledge base.
        IntentRule(name="news", keywords=("news",), build=call_url(news_api_url)),
    )


def rules_from_config(config: ChatConfig) -> Tuple[IntentRule, ...]:
    return build_rules(
        weather_api_url=config.weather_api_url,
        news_api_url=config.news_api_url,
    )


def classify_intent(text: Optional[str], rules: Sequence[IntentRule]) -> IntentAction:
    """Map anchor text to the action the assembler should take."""
    if text is None or not text.strip():
        return NoAction()
    lowered = text.lower()
    for rule in rules:
        if not rule.matches(lowered):
            continue
        action = rule.build(text)
        if action is not None:
            return action
    return RunKnowledgeSearch(text)
