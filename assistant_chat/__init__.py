"""Chat assistant middle layer with conversation memory, tools and RAG.

The package keeps a per-user conversation store, decides for each incoming
message whether to run a tool or a knowledge-base search, and forwards the
assembled prompt to an OpenAI-compatible chat-completions gateway.  The main
entry points are ``assistant_chat.api.create_app`` for the HTTP service and
``assistant_chat.service.ChatService`` for embedding the engine in Python.
"""

from .config import ChatConfig, ChatLLMConfig
from .service import ChatService
from .session_store import SessionStore, SessionSweeper

__all__ = ["ChatConfig", "ChatLLMConfig", "ChatService", "SessionStore", "SessionSweeper"]
