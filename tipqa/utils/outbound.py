"""
Outbound message queue.

The chat transport polls POST /chat/send and relays whatever is queued for a
channel. The orchestrator only sees the ``send`` primitive.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import List, Optional

from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="chat")


@dataclass(frozen=True)
class OutboundMessage:
    event_id: str
    channel_id: str
    message: str
    thread_id: Optional[str] = None


class OutboundMessageQueue:
    def __init__(self) -> None:
        self._queue: List[OutboundMessage] = []

    def __len__(self) -> int:
        return len(self._queue)

    async def send(
        self, channel_id: str, message: str, *, thread_id: Optional[str] = None
    ) -> str:
        item = OutboundMessage(
            event_id=str(uuid.uuid4()),
            channel_id=channel_id,
            message=message,
            thread_id=thread_id,
        )
        self._queue.append(item)
        logger.debug("Queued message %s for channel %s", item.event_id, channel_id)
        return item.event_id

    def drain(self, channel_id: Optional[str] = None, limit: Optional[int] = None) -> List[OutboundMessage]:
        """Remove and return queued messages, oldest first, optionally for one channel."""
        selected = [m for m in self._queue if channel_id is None or m.channel_id == channel_id]
        if limit is not None:
            selected = selected[: max(limit, 0)]
        taken = {m.event_id for m in selected}
        self._queue = [m for m in self._queue if m.event_id not in taken]
        return selected
