"""
In-memory session registry.

The single source of truth for live sessions. Mutations are serialized
behind an asyncio lock; teardown races are resolved by ``claim()``, which
hands a session to exactly one caller.
"""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from rundev.exceptions import SessionNotFound
from rundev.models import Session, SessionState


class SessionRegistry:
    """Volatile, process-lifetime table of sessions keyed by id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def insert(self, session: Session) -> None:
        """
        Register a new session.

        Raises:
            ValueError: If the id is already taken.
        """
        async with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Duplicate session id: {session.session_id}")
            self._sessions[session.session_id] = session

    async def get(self, session_id: str) -> Session:
        """
        Raises:
            SessionNotFound: If no session has this id.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session not found: {session_id}")
        return session

    def lookup(self, session_id: str) -> Optional[Session]:
        """Lock-free read for hot paths such as request routing."""
        return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> Optional[Session]:
        """Drop a session. Returns it, or None if it was already gone."""
        async with self._lock:
            return self._sessions.pop(session_id, None)

    async def claim(self, session_id: str) -> Optional[Session]:
        """
        Move a live session to STOPPING for teardown.

        Returns the session to the single caller that wins; returns None if
        the session is absent or another caller already claimed it.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.state in (
                SessionState.STOPPING,
                SessionState.DESTROYED,
            ):
                return None
            session.state = SessionState.STOPPING
            return session

    async def transition(
        self,
        session_id: str,
        expected: SessionState,
        target: SessionState,
    ) -> bool:
        """Compare-and-set a session's state. False if it was not ``expected``."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.state is not expected:
                return False
            session.state = target
            return True

    async def list_all(self) -> List[Session]:
        """Snapshot of every session currently held."""
        async with self._lock:
            return list(self._sessions.values())
