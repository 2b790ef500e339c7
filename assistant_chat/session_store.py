"""In-memory conversation store keyed by user id.

Sessions live only for the lifetime of the process.  Each session keeps an
append-only list of turns; after every append the trim policy bounds the
number of ordinary (non-system) turns while keeping every system turn.
Idle sessions are removed by :class:`SessionSweeper`, which the application
owns and runs on a fixed interval.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant", "system")
DEFAULT_MAX_NON_SYSTEM_TURNS = 20
DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 60


@dataclass(frozen=True)
class Turn:
    role: str
    content: str
    timestamp: float

    def as_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Session:
    user_id: str
    turns: List[Turn] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)


class SessionStore:
    """Owns the mapping from user id to :class:`Session`."""

    def __init__(
        self,
        *,
        max_non_system_turns: int = DEFAULT_MAX_NON_SYSTEM_TURNS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_non_system_turns <= 0:
            raise ValueError("max_non_system_turns must be a positive integer")
        self.max_non_system_turns = max_non_system_turns
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def get_or_create(self, user_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                now = self._clock()
                session = Session(user_id=user_id, created_at=now, last_activity=now)
                self._sessions[user_id] = session
                logger.info("Created new conversation session for user %s", user_id)
            return session

    def append(self, user_id: str, role: str, content: str) -> None:
        if role not in ROLES:
            raise ValueError(f"Unsupported role '{role}'")
        with self._lock:
            session = self.get_or_create(user_id)
            now = max(self._clock(), session.last_activity)
            session.turns.append(Turn(role=role, content=content, timestamp=now))
            session.last_activity = now
            self._trim(session)
            logger.debug(
                "Added %s turn to session %s (%d total)", role, user_id, len(session.turns)
            )

    def history(self, user_id: str, limit: Optional[int] = None) -> List[Turn]:
        """Return a copy of the session's turns, optionally the last ``limit``."""
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                return []
            turns = list(session.turns)
        if limit and len(turns) > limit:
            return turns[-limit:]
        return turns

    def clear(self, user_id: str) -> None:
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                return
            session.turns = []
            session.last_activity = max(self._clock(), session.last_activity)
        logger.info("Cleared conversation history for user %s", user_id)

    def sweep_idle(self, max_age_seconds: float) -> int:
        """Delete sessions idle for longer than ``max_age_seconds``."""
        with self._lock:
            now = self._clock()
            expired = [
                user_id
                for user_id, session in self._sessions.items()
                if now - session.last_activity > max_age_seconds
            ]
            for user_id in expired:
                del self._sessions[user_id]
        if expired:
            logger.info("Cleaned up %d inactive conversation session(s)", len(expired))
        return len(expired)

    def active_sessions(self) -> List[Dict[str, object]]:
        """Lightweight per-session metadata for monitoring."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [
            {
                "user_id": session.user_id,
                "turn_count": len(session.turns),
                "created_at": session.created_at,
                "last_activity": session.last_activity,
            }
            for session in sessions
        ]

    def _trim(self, session: Session) -> None:
        system_turns = [t for t in session.turns if t.role == "system"]
        conversation = [t for t in session.turns if t.role != "system"]
        if len(conversation) <= self.max_non_system_turns:
            return
        # System turns are never trimmed, only ordinary chat turns age out.
        session.turns = system_turns + conversation[-self.max_non_system_turns :]
        logger.info(
            "Trimmed conversation history for user %s to %d turns",
            session.user_id,
            len(session.turns),
        )


class SessionSweeper:
    """Periodic task that evicts idle sessions from a :class:`SessionStore`."""

    def __init__(
        self,
        store: SessionStore,
        *,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.store = store
        self.max_age_seconds = max_age_seconds
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.store.sweep_idle(self.max_age_seconds)
            except Exception:
                logger.exception("Session sweep failed")

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.info(
            "Session sweeper started (interval=%ss, max_age=%ss)",
            self.interval_seconds,
            self.max_age_seconds,
        )
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Session sweeper stopped")
