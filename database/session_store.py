"""
SessionStore — In-memory per-user dialogue sessions.

Features:
  - Get-or-create by user id; one session per user
  - Per-user asyncio.Lock (turn()) so one user's turns never interleave
  - Audit trail helpers (history / responses / extras)
  - All data lost on process restart

Sessions are conversational state, not durable business records, so there is
no persistent backend. The caller releases a session's temp directory before
calling remove().
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import structlog

from models.schemas import Session, Stage, new_session_data

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Process-wide session map. Safe under a single event loop."""

    def __init__(self, initial_stage: Stage = Stage.PORTAL):
        self.initial_stage = initial_stage
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._turns: dict[str, int] = {}

    def _create(self, user_id: str) -> Session:
        session = Session(user_id=user_id, stage=self.initial_stage.value, data=new_session_data())
        logger.info("session_created", session_id=session.id, user_id=user_id)
        return session

    def get(self, user_id: str) -> Session:
        session = self._sessions.get(user_id)
        if session is None:
            session = self._create(user_id)
            self._sessions[user_id] = session
        return session

    def peek(self, user_id: str) -> Optional[Session]:
        return self._sessions.get(user_id)

    def has(self, user_id: str) -> bool:
        return user_id in self._sessions

    def remove(self, user_id: str) -> None:
        removed = self._sessions.pop(user_id, None)
        if removed:
            logger.info("session_removed", session_id=removed.id, user_id=user_id, stage=removed.stage)

    @asynccontextmanager
    async def turn(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's lock for one turn. The lock is dropped once no turn holds or awaits it."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._turns[user_id] = self._turns.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._turns[user_id] -= 1
            if not self._turns[user_id]:
                del self._turns[user_id]
                self._locks.pop(user_id, None)

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    def touch(self, session: Session) -> None:
        session.updated_at = _utcnow()

    def record_user_message(self, session: Session, content: str, attachments_count: int = 0) -> None:
        at = _utcnow().isoformat()
        session.data.setdefault("history", []).append({
            "at": at,
            "type": "user",
            "content": content or "",
            "attachments": attachments_count,
        })
        session.data.setdefault("responses", []).append({"at": at, "content": content})
        self.touch(session)

    def record_extra(self, session: Session, text: str) -> None:
        session.data.setdefault("extras", []).append({"at": _utcnow().isoformat(), "content": text})
        self.touch(session)

    @property
    def count(self) -> int:
        return len(self._sessions)
