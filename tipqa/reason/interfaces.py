from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Union

from tipqa.schemas.knowledge import EmbeddedChunk


class EmbeddingService(Protocol):
    async def embed(self, texts: List[str]) -> List[List[float]]:
        ...


@dataclass(frozen=True)
class AnswerOk:
    answer: str
    cited_chunk_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AnswerMalformed:
    raw_text: str
    reason: str = ""


GenerationResult = Union[AnswerOk, AnswerMalformed]


class AnswerGenerationService(Protocol):
    async def generate(
        self,
        system_context: str,
        retrieved_chunks: Sequence[EmbeddedChunk],
        question: str,
    ) -> GenerationResult:
        ...


class Retriever(Protocol):
    async def retrieve(self, query_text: str, k: int) -> List[EmbeddedChunk]:
        ...


class PriceSource(Protocol):
    async def get_price(self) -> float:
        ...


class MessageSender(Protocol):
    async def send(
        self, channel_id: str, message: str, *, thread_id: Optional[str] = None
    ) -> str:
        """Send a message and return its event id."""
        ...
