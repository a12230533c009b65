"""Session Store for the Orchestrator.

Holds conversation state shared by every request in the process.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Optional

from shared.logging import get_logger
from shared.models import ChatMessage, ChatSession, utcnow

logger = get_logger(__name__)


class SessionStore:
    """
    In-memory store of chat sessions keyed by session id.

    Responsibilities:
    - Atomic get-or-create (first writer wins)
    - Append-only message history
    - Per-session locks so a session has at most one turn in flight
    - Optional TTL eviction of idle sessions

    Unknown ids are not an error: reads return None or an empty history
    and appends are no-ops.
    """

    def __init__(self, session_ttl_minutes: Optional[int] = None) -> None:
        """
        Initialize the session store.

        Args:
            session_ttl_minutes: Idle time after which a session may be
                evicted; None keeps sessions for the process lifetime
        """
        self.ttl = timedelta(minutes=session_ttl_minutes) if session_ttl_minutes else None

        self._sessions: dict[str, ChatSession] = {}
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._in_flight: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(
        self,
        session_id: str,
        model: str,
        backend: str = ""
    ) -> ChatSession:
        """
        Return the session for session_id, creating it if absent.

        The model is only used on creation; an existing session keeps
        the model it was created with.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session

            session = ChatSession(id=session_id, model=model, backend=backend)
            self._sessions[session_id] = session
            self._session_locks[session_id] = asyncio.Lock()

        logger.info(
            "Session created",
            session_id=session_id,
            model=model,
            backend=backend
        )
        return session

    async def get(self, session_id: str) -> Optional[ChatSession]:
        """Get a session by id, or None if unknown."""
        return self._sessions.get(session_id)

    def lock(self, session_id: str) -> asyncio.Lock:
        """
        Get the lock serialising turns on a session.

        Raises:
            KeyError: If the session does not exist
        """
        return self._session_locks[session_id]

    @asynccontextmanager
    async def turn(self, session_id: str) -> AsyncIterator[ChatSession]:
        """
        Hold a session for one turn.

        The session is pinned against eviction as soon as the block is
        entered, including while it waits for the session lock, and the
        lock is held for the body of the block.

        Raises:
            KeyError: If the session does not exist
        """
        session = self._sessions[session_id]
        session_lock = self._session_locks[session_id]

        self._in_flight[session_id] = self._in_flight.get(session_id, 0) + 1
        try:
            async with session_lock:
                yield session
        finally:
            remaining = self._in_flight[session_id] - 1
            if remaining:
                self._in_flight[session_id] = remaining
            else:
                del self._in_flight[session_id]

    async def append(
        self,
        session_id: str,
        message: ChatMessage
    ) -> Optional[ChatMessage]:
        """
        Append a message to a session.

        Returns:
            The appended message, or None if the session is unknown
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("Append to unknown session ignored", session_id=session_id)
            return None

        session.messages.append(message)
        session.updated_at = message.timestamp
        return message

    async def get_messages(self, session_id: str) -> list[ChatMessage]:
        """Get a snapshot of the session's history; empty if unknown."""
        session = self._sessions.get(session_id)
        if session is None:
            return []
        return list(session.messages)

    async def delete(self, session_id: str) -> bool:
        """
        Delete a session.

        Returns:
            True if deleted, False if not found
        """
        async with self._lock:
            if session_id in self._sessions:
                del self._sessions[session_id]
                self._session_locks.pop(session_id, None)
                logger.info("Session deleted", session_id=session_id)
                return True
        return False

    async def cleanup_expired(self) -> int:
        """
        Remove sessions idle for longer than the TTL.

        Sessions with a turn in flight or waiting are never evicted.

        Returns:
            Number of sessions removed
        """
        if self.ttl is None:
            return 0

        now = utcnow()
        expired = []

        async with self._lock:
            for session_id, session in self._sessions.items():
                if session_id in self._in_flight or self._session_locks[session_id].locked():
                    continue
                if now - session.updated_at > self.ttl:
                    expired.append(session_id)

            for session_id in expired:
                del self._sessions[session_id]
                del self._session_locks[session_id]

        if expired:
            logger.info("Expired sessions cleaned up", count=len(expired))

        return len(expired)

    def list_sessions(self) -> list[dict[str, Any]]:
        """List session summaries."""
        return [
            {
                "id": s.id,
                "model": s.model,
                "backend": s.backend,
                "message_count": len(s.messages),
                "created_at": s.created_at.isoformat(),
                "updated_at": s.updated_at.isoformat()
            }
            for s in self._sessions.values()
        ]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_stats(self) -> dict[str, Any]:
        """Get session store statistics."""
        return {
            "total_sessions": len(self._sessions),
            "ttl_minutes": self.ttl.total_seconds() / 60 if self.ttl else None
        }
