"""
Thread Store

Append-only log of the messages exchanged in each thread, used to give the
answer generator some conversation context. Follows the same session-factory
pattern as the other SQLAlchemy-backed stores.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tipqa.database.models import Base, ThreadMessage
from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="chat")

SUMMARY_MESSAGE_LIMIT = 8


@dataclass(frozen=True)
class ThreadEntry:
    event_id: str
    author_id: str
    content: str
    created_at: datetime
    is_starter: bool


@dataclass(frozen=True)
class ThreadContext:
    thread_id: str
    initial_prompt: str
    conversation: List[ThreadEntry]


def summarize_conversation(
    messages: List[ThreadEntry], bot_id: Optional[str], limit: int = SUMMARY_MESSAGE_LIMIT
) -> str:
    """Render the last ``limit`` messages as "User:" / "Assistant:" turns."""
    recent = messages[-limit:] if limit > 0 else []
    lines = []
    for entry in recent:
        role = "Assistant" if bot_id is not None and entry.author_id == bot_id else "User"
        lines.append(f"{role}: {entry.content}")
    return "\n\n".join(lines)


class ThreadStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: Optional[AsyncEngine] = None,
    ) -> None:
        """
        Args:
            session_factory: Database session factory
            engine: Engine used by init_schema() and close(); optional
        """
        self.session_factory = session_factory
        self.engine = engine

    async def init_schema(self) -> None:
        if self.engine is None:
            raise RuntimeError("ThreadStore.init_schema requires an engine")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Thread store schema ready")

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    async def record_message(
        self,
        *,
        event_id: str,
        thread_id: str,
        author_id: str,
        content: str,
        is_starter: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        """Insert (or replace, keyed by event id) one message."""
        async with self.session_factory() as session:
            await session.merge(
                ThreadMessage(
                    event_id=event_id,
                    thread_id=thread_id,
                    user_id=author_id,
                    message=content,
                    is_thread_starter=is_starter,
                    created_at=created_at or datetime.now(timezone.utc),
                )
            )
            await session.commit()

    async def ensure_thread_starter(
        self, thread_id: str, event_id: str, author_id: str, content: str
    ) -> None:
        """Record a message, flagging it as the starter if the thread has none yet.

        Re-recording the starter keeps its flag.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(ThreadMessage)
                .where(
                    ThreadMessage.thread_id == thread_id,
                    ThreadMessage.event_id != event_id,
                    ThreadMessage.is_thread_starter.is_(True),
                )
            )
            has_starter = (result.scalar_one() or 0) > 0

        await self.record_message(
            event_id=event_id,
            thread_id=thread_id,
            author_id=author_id,
            content=content,
            is_starter=not has_starter,
        )

    async def fetch_thread(self, thread_id: str) -> Optional[ThreadContext]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ThreadMessage)
                .where(ThreadMessage.thread_id == thread_id)
                .order_by(ThreadMessage.created_at.asc())
            )
            rows = list(result.scalars().all())

        if not rows:
            return None

        conversation = [
            ThreadEntry(
                event_id=row.event_id,
                author_id=row.user_id,
                content=row.message,
                created_at=row.created_at,
                is_starter=bool(row.is_thread_starter),
            )
            for row in rows
        ]
        initial_prompt = next(
            (entry.content for entry in conversation if entry.is_starter),
            conversation[0].content,
        )
        return ThreadContext(
            thread_id=thread_id, initial_prompt=initial_prompt, conversation=conversation
        )
