"""Client wrapper for the chat-completions gateway with streaming support."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from .config import ChatLLMConfig

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """A required setting (usually a credential) is missing."""


class UpstreamError(RuntimeError):
    """The completion provider answered with a non-success status."""

    def __init__(self, status_code: int, details: Any) -> None:
        super().__init__(f"Completion provider returned HTTP {status_code}")
        self.status_code = status_code
        self.details = details


class ChatLLMClient:
    """Thin wrapper around an OpenAI-compatible chat-completions endpoint."""

    def __init__(self, config: ChatLLMConfig, *, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.http = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError("OpenRouter API key not configured")

    def stream_completion(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        model_kwargs: Optional[Dict[str, object]] = None,
    ) -> Iterator[str]:
        """Open a streaming completion and return an iterator of text deltas.

        The HTTP request is made before this returns, so an upstream error
        surfaces as :class:`UpstreamError` before any token is consumed.
        """
        payload = self._payload(messages, model=model, stream=True, model_kwargs=model_kwargs)
        logger.info("Streaming chat completion to %s using model %s", self.config.endpoint, payload["model"])
        response = self._post(payload, stream=True)
        return self._iter_deltas(response)

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        model_kwargs: Optional[Dict[str, object]] = None,
    ) -> Dict[str, Any]:
        """Return the provider's full JSON completion (no streaming)."""
        payload = self._payload(messages, model=model, stream=False, model_kwargs=model_kwargs)
        logger.debug("Requesting non-streaming completion for %d message(s)", len(messages))
        response = self._post(payload, stream=False)
        return response.json()

    @staticmethod
    def extract_content(data: Dict[str, Any]) -> str:
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        return message.get("content", "") or ""

    def _payload(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str],
        stream: bool,
        model_kwargs: Optional[Dict[str, object]],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model or self.config.model,
            "messages": messages,
            "stream": stream,
        }
        if model_kwargs:
            payload.update(model_kwargs)
        return payload

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.config.referer,
            "X-Title": self.config.title,
        }

    def _post(self, payload: Dict[str, Any], *, stream: bool) -> requests.Response:
        self.ensure_configured()
        response = self.http.post(
            self.config.endpoint,
            json=payload,
            headers=self._headers(),
            stream=stream,
            timeout=self.config.request_timeout,
        )
        if not response.ok:
            try:
                details: Any = response.json()
            except ValueError:
                details = response.text
            logger.error("Completion provider error %s: %s", response.status_code, details)
            response.close()
            raise UpstreamError(response.status_code, details)
        return response

    def _iter_deltas(self, response: requests.Response) -> Iterator[str]:
        try:
            for raw_line in response.iter_lines():
                if not raw_line:
                    continue
                line = raw_line.decode("utf-8").strip() if isinstance(raw_line, bytes) else raw_line.strip()
                if line.startswith("data:"):
                    line = line[5:].strip()
                if not line or line == "[DONE]":
                    continue

                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON stream line: %s", line)
                    continue

                token = self._extract_delta(payload)
                if token:
                    yield token
        finally:
            response.close()

    @staticmethod
    def _extract_delta(payload: Dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        delta = choices[0].get("delta") or {}
        return str(delta.get("content") or "")
