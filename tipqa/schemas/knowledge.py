from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from tipqa.knowledge.chunker import Chunk


CACHE_FORMAT_VERSION = "1.0.0"


@dataclass(frozen=True)
class EmbeddedChunk(Chunk):
    embedding: List[float] = field(default_factory=list)
    # Only set on the copies returned by a query
    similarity: Optional[float] = None

    @classmethod
    def from_chunk(cls, chunk: Chunk, embedding: List[float]) -> "EmbeddedChunk":
        values = {f.name: getattr(chunk, f.name) for f in fields(Chunk)}
        return cls(embedding=list(embedding), **values)


class CachedChunk(BaseModel):
    id: str
    content: str
    source: str
    section: str
    keywords: List[str] = Field(default_factory=list)
    embedding: List[float]

    @classmethod
    def from_embedded(cls, chunk: EmbeddedChunk) -> "CachedChunk":
        data = asdict(chunk)
        data.pop("similarity", None)
        data["keywords"] = sorted(chunk.keywords)
        return cls(**data)

    def to_embedded(self) -> EmbeddedChunk:
        return EmbeddedChunk(
            id=self.id,
            content=self.content,
            source=self.source,
            section=self.section,
            keywords=frozenset(self.keywords),
            embedding=list(self.embedding),
        )


class EmbeddingCacheFile(BaseModel):
    """On-disk layout of the embedding cache blob."""

    version: str = CACHE_FORMAT_VERSION
    fingerprint: str
    # Vectors from another model or size are not comparable with fresh queries
    embedding_model: Optional[str] = None
    dimension: Optional[int] = None
    chunks: List[CachedChunk]
    created_at: datetime
