"""
Pending Question Store

Process-local map of user id -> the one question that user is waiting on.
Nothing is persisted: a restart drops every pending question and users ask
again.

The store operations are synchronous. Callers that handle events for the same
user concurrently must hold ``lock(user_id)`` around their read-modify-write
sequence (get -> validate -> mark_paid/clear).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="payments")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PendingQuestion:
    user_id: str
    question: str
    thread_id: str
    channel_id: str
    created_at: datetime = field(default_factory=_utcnow)
    tip_received: bool = False


class PendingQuestionStore:
    def __init__(
        self,
        *,
        max_age: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Args:
            max_age: Drop entries older than this on purge_expired(). None keeps
                     entries until answered.
            clock: Time source, injectable for tests.
        """
        self._pending: Dict[str, PendingQuestion] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.max_age = max_age
        self._clock = clock

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._pending

    def park(
        self, user_id: str, question: str, thread_id: str, channel_id: str
    ) -> PendingQuestion:
        """Store a question for ``user_id``, replacing any previous one."""
        self.purge_expired()
        previous = self._pending.get(user_id)
        if previous is not None:
            logger.info(
                "Replacing pending question for %s (was paid=%s)",
                user_id,
                previous.tip_received,
            )
        pending = PendingQuestion(
            user_id=user_id,
            question=question,
            thread_id=thread_id,
            channel_id=channel_id,
            created_at=self._clock(),
            tip_received=False,
        )
        self._pending[user_id] = pending
        return pending

    def get(self, user_id: str) -> Optional[PendingQuestion]:
        return self._pending.get(user_id)

    def mark_paid(self, user_id: str) -> None:
        pending = self._pending.get(user_id)
        if pending is not None:
            pending.tip_received = True

    def clear(self, user_id: str) -> None:
        self._pending.pop(user_id, None)

    def purge_expired(self) -> int:
        """Remove entries older than ``max_age``; returns how many were dropped."""
        if self.max_age is None:
            return 0
        cutoff = self._clock() - self.max_age
        expired = [uid for uid, p in self._pending.items() if p.created_at < cutoff]
        for user_id in expired:
            self.clear(user_id)
        if expired:
            logger.info("Expired %s pending question(s)", len(expired))
        return len(expired)

    def lock(self, user_id: str) -> asyncio.Lock:
        """Per-user lock serialising event handling for one user."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock
