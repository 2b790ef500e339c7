"""Configuration objects for the chat module."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

DEFAULT_WEATHER_API_URL = (
    "https://api.open-meteo.com/v1/forecast?latitude=21.0285&longitude=105.8542"
    "&current_weather=true&timezone=Asia/Ho_Chi_Minh"
)


@dataclass
class ChatLLMConfig:
    """LLM gateway connection details."""

    endpoint: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str = "openai/gpt-3.5-turbo"
    request_timeout: int = 60
    api_key: Optional[str] = None
    referer: str = "http://localhost:3001"
    title: str = "AI Chat Assistant"


@dataclass
class ChatConfig:
    """Runtime controls for chat behaviour."""

    llm: ChatLLMConfig = field(default_factory=ChatLLMConfig)
    enable_context: bool = True
    context_top_k: int = 3
    max_history_messages: int = 20
    history_window: int = 10
    session_max_age_seconds: int = 24 * 60 * 60
    sweep_interval_seconds: int = 60 * 60
    weather_api_url: str = DEFAULT_WEATHER_API_URL
    news_api_url: Optional[str] = None
    tool_timeout: int = 15
    model_kwargs: Dict[str, object] = field(default_factory=dict)
