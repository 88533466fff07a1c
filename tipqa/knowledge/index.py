"""
Knowledge Index

Chunks the corpus, embeds every chunk once per corpus fingerprint (reusing the
on-disk cache when it matches) and answers nearest-neighbour queries by cosine
similarity. The vector matrix is written once at construction and only read
afterwards, so concurrent queries need no locking.
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import List, Optional, Sequence

import numpy as np

from tipqa.knowledge.chunker import Chunk, Chunker
from tipqa.knowledge.sources import KnowledgeSource, compute_fingerprint
from tipqa.memory.embedding_cache import EmbeddingCache
from tipqa.reason.interfaces import EmbeddingService
from tipqa.schemas.knowledge import EmbeddedChunk
from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="knowledge")

DEFAULT_BATCH_SIZE = 100


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product over the product of norms; 0.0 when either vector is zero."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denominator = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


async def embed_chunks(
    chunks: Sequence[Chunk],
    embedder: EmbeddingService,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> List[EmbeddedChunk]:
    """Embed chunks in bounded batches, preserving chunk order."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    embedded: List[EmbeddedChunk] = []
    total_batches = (len(chunks) + batch_size - 1) // batch_size
    for start in range(0, len(chunks), batch_size):
        batch = chunks[start : start + batch_size]
        vectors = await embedder.embed([chunk.content for chunk in batch])
        if len(vectors) != len(batch):
            raise ValueError(
                f"Embedding service returned {len(vectors)} vectors for {len(batch)} texts"
            )
        embedded.extend(
            EmbeddedChunk.from_chunk(chunk, vector) for chunk, vector in zip(batch, vectors)
        )
        logger.info("Embedded batch %s/%s", start // batch_size + 1, total_batches)
    return embedded


class KnowledgeIndex:
    def __init__(
        self,
        chunks: Sequence[EmbeddedChunk],
        *,
        embedder: EmbeddingService,
        fingerprint: Optional[str] = None,
        loaded_from_cache: bool = False,
    ) -> None:
        self._chunks: List[EmbeddedChunk] = list(chunks)
        self._embedder = embedder
        self.fingerprint = fingerprint
        self.loaded_from_cache = loaded_from_cache

        if self._chunks:
            matrix = np.asarray([c.embedding for c in self._chunks], dtype=np.float64)
            if matrix.ndim != 2:
                raise ValueError("All chunk embeddings must share one dimension")
            self._matrix = matrix
            self._norms = np.linalg.norm(matrix, axis=1)
        else:
            self._matrix = np.zeros((0, 0), dtype=np.float64)
            self._norms = np.zeros(0, dtype=np.float64)

    @classmethod
    async def build(
        cls,
        sources: Sequence[KnowledgeSource],
        *,
        embedder: EmbeddingService,
        cache: Optional[EmbeddingCache] = None,
        chunker: Optional[Chunker] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        embedding_model: Optional[str] = None,
        dimension: Optional[int] = None,
    ) -> "KnowledgeIndex":
        """Restore the index from ``cache`` when it matches, otherwise embed and save.

        ``embedding_model`` and ``dimension`` describe ``embedder``; a cache written
        for a different model or vector size is rebuilt.
        """
        t0 = time.monotonic()
        fingerprint = compute_fingerprint(sources)

        if cache is not None:
            cached = cache.load(fingerprint, embedding_model=embedding_model, dimension=dimension)
            if cached is not None:
                logger.info("Knowledge index restored from cache with %s chunks", len(cached))
                return cls(
                    cached, embedder=embedder, fingerprint=fingerprint, loaded_from_cache=True
                )

        chunker = chunker or Chunker()
        chunks: List[Chunk] = []
        for source in sources:
            source_chunks = chunker.chunk(source.content, source.id)
            logger.info("Chunked %s: %s chunks", source.file_name, len(source_chunks))
            chunks.extend(source_chunks)

        embedded = await embed_chunks(chunks, embedder, batch_size=batch_size)

        if cache is not None:
            try:
                cache.save(embedded, fingerprint, embedding_model=embedding_model)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Failed to persist embedding cache, index is in-memory only: %s", exc
                )

        logger.info(
            "Knowledge index built with %s embedded chunks in %.1fs",
            len(embedded),
            time.monotonic() - t0,
        )
        return cls(embedded, embedder=embedder, fingerprint=fingerprint)

    @property
    def chunks(self) -> List[EmbeddedChunk]:
        return list(self._chunks)

    def __len__(self) -> int:
        return len(self._chunks)

    def similarities(self, query_embedding: Sequence[float]) -> np.ndarray:
        query = np.asarray(query_embedding, dtype=np.float64)
        if self._matrix.shape[1] != query.shape[0]:
            raise ValueError(
                f"Query dimension {query.shape[0]} != index dimension {self._matrix.shape[1]}"
            )
        denominators = self._norms * float(np.linalg.norm(query))
        dots = self._matrix @ query
        scores = np.zeros(len(self._chunks), dtype=np.float64)
        np.divide(dots, denominators, out=scores, where=denominators != 0)
        return scores

    async def retrieve(self, query_text: str, k: int) -> List[EmbeddedChunk]:
        """Top ``k`` chunks by cosine similarity, ties kept in corpus order."""
        if not self._chunks or k <= 0:
            return []

        t0 = time.monotonic()
        [query_embedding] = await self._embedder.embed([query_text])
        t_embed = time.monotonic()

        scores = self.similarities(query_embedding)
        # Stable sort on negated scores keeps corpus order among equal scores
        order = np.argsort(-scores, kind="stable")[:k]
        results = [replace(self._chunks[i], similarity=float(scores[i])) for i in order]

        logger.debug(
            {
                "telemetry": "index.retrieve",
                "embed_ms": int((t_embed - t0) * 1000),
                "search_ms": int((time.monotonic() - t_embed) * 1000),
                "hits": len(results),
                "best_similarity": results[0].similarity if results else None,
            }
        )
        return results
