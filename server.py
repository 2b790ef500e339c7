"""Command line entry point serving the chat assistant API."""

from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Dict, Optional

import uvicorn
from dotenv import load_dotenv

from assistant_chat import ChatConfig, ChatLLMConfig
from assistant_chat.api import create_app
from assistant_chat.config import DEFAULT_WEATHER_API_URL
from knowledge_store import EmbeddingConfig, KnowledgeStore

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the chat assistant with RAG and tool calling.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=3000, help="Port to bind.")
    parser.add_argument("--log_dir", default="./logs", help="Directory for application logs.")
    parser.add_argument(
        "--llm_endpoint",
        default="https://openrouter.ai/api/v1/chat/completions",
        help="Chat-completions endpoint.",
    )
    parser.add_argument("--llm_model", default="openai/gpt-3.5-turbo", help="Default model for completions.")
    parser.add_argument("--request_timeout", type=int, default=60, help="Timeout for LLM calls (seconds).")
    parser.add_argument("--knowledge_dir", default="./knowledge", help="Directory of the persisted knowledge index.")
    parser.add_argument(
        "--embedding_endpoint",
        default="http://localhost:8001/v1/embeddings",
        help="URL of the embedding service used for ingestion and search.",
    )
    parser.add_argument("--embedding_model", default="text-embedding-3-small", help="Embedding model name.")
    parser.add_argument("--embedding_batch_size", type=int, default=32, help="Batch size for embedding calls.")
    parser.add_argument(
        "--embedding_model_kwargs",
        help="Optional JSON string of extra model kwargs passed to the embedding endpoint.",
    )
    parser.add_argument("--context_top_k", type=int, default=3, help="Knowledge snippets injected per turn.")
    parser.add_argument("--max_history_messages", type=int, default=20, help="Max non-system turns kept per user.")
    parser.add_argument("--history_window", type=int, default=10, help="Stored turns replayed on each request.")
    parser.add_argument("--session_max_age", type=int, default=24 * 60 * 60, help="Idle seconds before a session is swept.")
    parser.add_argument("--sweep_interval", type=int, default=60 * 60, help="Seconds between idle-session sweeps.")
    parser.add_argument("--weather_api_url", default=DEFAULT_WEATHER_API_URL, help="URL called for weather questions.")
    parser.add_argument("--news_api_url", help="Optional URL called for news questions.")
    parser.add_argument("--disable_context", action="store_true", help="Disable knowledge-base context injection.")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ChatConfig:
    return ChatConfig(
        llm=ChatLLMConfig(
            endpoint=args.llm_endpoint,
            model=args.llm_model,
            request_timeout=args.request_timeout,
            api_key=os.environ.get("OPENROUTER_API_KEY"),
            referer=os.environ.get("FRONTEND_URL", "http://localhost:3001"),
        ),
        enable_context=not args.disable_context,
        context_top_k=args.context_top_k,
        max_history_messages=args.max_history_messages,
        history_window=args.history_window,
        session_max_age_seconds=args.session_max_age,
        sweep_interval_seconds=args.sweep_interval,
        weather_api_url=args.weather_api_url,
        news_api_url=args.news_api_url,
    )


def build_embedding_config(args: argparse.Namespace) -> EmbeddingConfig:
    model_kwargs: Dict[str, Any] = {}
    if args.embedding_model_kwargs:
        try:
            model_kwargs = json.loads(args.embedding_model_kwargs)
        except Exception as exc:
            raise SystemExit(f"Failed to parse --embedding_model_kwargs: {exc}")
    return EmbeddingConfig(
        endpoint=args.embedding_endpoint,
        model=args.embedding_model,
        batch_size=args.embedding_batch_size,
        api_key=os.environ.get("EMBEDDING_API_KEY"),
        model_kwargs=model_kwargs,
    )


def main(argv: Optional[list[str]] = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    chat_cfg = build_config(args)
    knowledge = KnowledgeStore(args.knowledge_dir, embedding_config=build_embedding_config(args))

    app = create_app(chat_cfg, knowledge=knowledge, log_dir=args.log_dir)
    knowledge.load()
    if not chat_cfg.llm.api_key:
        logger.warning("OPENROUTER_API_KEY not set - AI chat will not work")
    logger.info("Starting chat assistant on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
