from __future__ import annotations

import asyncio
import hashlib
import random
from collections import OrderedDict
from typing import List, Optional

from openai import OpenAI
from openai import APIError, RateLimitError, APITimeoutError, APIConnectionError

from tipqa.errors import EmbeddingDimensionError
from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="knowledge")

DEFAULT_MODEL = "text-embedding-3-small"
EMBEDDING_DIM = 1536
MAX_ATTEMPTS = 4


class _LRU:
    def __init__(self, max_entries: int = 2000) -> None:
        self.max = max_entries
        self.data: OrderedDict[str, List[float]] = OrderedDict()

    def get(self, key: str) -> Optional[List[float]]:
        value = self.data.pop(key, None)
        if value is not None:
            # re-insert to mark as most-recently used
            self.data[key] = value
        return value

    def set(self, key: str, value: List[float]) -> None:
        if key in self.data:
            self.data.pop(key)
        self.data[key] = value
        if len(self.data) > self.max:
            # evict least-recently used
            self.data.popitem(last=False)


def _cache_key(model: str, text: str) -> str:
    return hashlib.sha256((model + "\n" + text).encode("utf-8")).hexdigest()


class OpenAIEmbedder:
    """Embedding service backed by the OpenAI embeddings endpoint.

    Output order matches input order. Single-text calls (queries) go through a
    small LRU so a repeated question does not cost another request; batch calls
    during an index build are not cached here since the index cache covers them.
    """

    def __init__(
        self,
        *,
        client: Optional[OpenAI] = None,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        dimension: int = EMBEDDING_DIM,
        max_attempts: int = MAX_ATTEMPTS,
        query_cache_size: int = 2000,
    ) -> None:
        self._client = client if client is not None else OpenAI(api_key=api_key)
        self.model = model
        self.dimension = dimension
        self.max_attempts = max_attempts
        self._query_cache = _LRU(query_cache_size)

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        if len(texts) == 1:
            key = _cache_key(self.model, texts[0])
            cached = self._query_cache.get(key)
            if cached is not None:
                return [cached]
            vectors = await self._retry_embed(texts)
            self._query_cache.set(key, vectors[0])
            return vectors

        return await self._retry_embed(texts)

    async def _retry_embed(self, inputs: List[str]) -> List[List[float]]:
        delay_seconds = 0.5
        for attempt in range(self.max_attempts):
            try:
                # The OpenAI client is synchronous; run in a thread to avoid blocking.
                response = await asyncio.to_thread(
                    self._client.embeddings.create, model=self.model, input=inputs
                )
                vectors = [d.embedding for d in response.data]

                if len(vectors) != len(inputs):
                    raise ValueError(
                        f"Embedding count mismatch: {len(vectors)} != {len(inputs)}"
                    )
                for vec in vectors:
                    if len(vec) != self.dimension:
                        raise EmbeddingDimensionError(len(vec), self.dimension)

                usage = getattr(response, "usage", None)
                total_tokens = getattr(usage, "total_tokens", None)
                if total_tokens is not None:
                    logger.debug(
                        {"embedding_inputs": len(inputs), "embedding_tokens": total_tokens}
                    )

                return vectors

            except (RateLimitError, APITimeoutError, APIConnectionError, APIError) as exc:
                if attempt == self.max_attempts - 1:
                    raise
                logger.warning(
                    "Embedding request failed (attempt %s/%s): %s",
                    attempt + 1,
                    self.max_attempts,
                    exc,
                )
                # Exponential backoff with jitter
                await asyncio.sleep(delay_seconds + random.random() * 0.25)
                delay_seconds *= 2

        return []
