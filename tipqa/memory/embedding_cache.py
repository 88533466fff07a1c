"""
Embedding Cache

Persists the embedded chunk set of one corpus generation to a single JSON file
so that restarts skip the embedding calls. A cache entry is valid only for the
exact fingerprint it was written with; anything else (missing file, corrupt
JSON, schema drift, other fingerprint) is a miss and forces a rebuild.
"""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from tipqa.schemas.knowledge import (
    CACHE_FORMAT_VERSION,
    CachedChunk,
    EmbeddedChunk,
    EmbeddingCacheFile,
)
from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="knowledge")


class EmbeddingCache:
    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(
        self,
        expected_fingerprint: str,
        *,
        embedding_model: Optional[str] = None,
        dimension: Optional[int] = None,
    ) -> Optional[List[EmbeddedChunk]]:
        """Return the cached chunks for ``expected_fingerprint`` or None on any miss.

        When ``embedding_model`` or ``dimension`` is given, a cache written with a
        different model or vector size is a miss as well.
        """
        if not self.path.exists():
            logger.info("No embedding cache found at %s, will generate fresh embeddings", self.path)
            return None

        try:
            cache = EmbeddingCacheFile.model_validate_json(self.path.read_bytes())
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Failed to load embedding cache %s, will regenerate: %s", self.path, exc)
            return None

        if cache.version != CACHE_FORMAT_VERSION:
            logger.warning(
                "Embedding cache version %s != %s, regenerating",
                cache.version,
                CACHE_FORMAT_VERSION,
            )
            return None

        if cache.fingerprint != expected_fingerprint:
            logger.info(
                "Embedding cache fingerprint mismatch (old=%s new=%s), regenerating",
                cache.fingerprint[:12],
                expected_fingerprint[:12],
            )
            return None

        if embedding_model is not None and cache.embedding_model != embedding_model:
            logger.info(
                "Embedding cache model %s != %s, regenerating", cache.embedding_model, embedding_model
            )
            return None

        if dimension is not None and (
            cache.dimension != dimension
            or any(len(chunk.embedding) != dimension for chunk in cache.chunks)
        ):
            logger.info(
                "Embedding cache dimension %s != %s, regenerating", cache.dimension, dimension
            )
            return None

        logger.info(
            "Loaded %s embeddings from cache (created %s)",
            len(cache.chunks),
            cache.created_at.isoformat(),
        )
        return [chunk.to_embedded() for chunk in cache.chunks]

    def save(
        self,
        chunks: Sequence[EmbeddedChunk],
        fingerprint: str,
        *,
        embedding_model: Optional[str] = None,
    ) -> None:
        """Write the full chunk set; replaces any previous cache atomically.

        Raises:
            OSError: if the file cannot be written. Callers decide whether that is fatal.
        """
        cache = EmbeddingCacheFile(
            version=CACHE_FORMAT_VERSION,
            fingerprint=fingerprint,
            embedding_model=embedding_model,
            dimension=len(chunks[0].embedding) if chunks else None,
            chunks=[CachedChunk.from_embedded(chunk) for chunk in chunks],
            created_at=datetime.now(timezone.utc),
        )
        payload = cache.model_dump_json(indent=2)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Saved %s embeddings to cache %s", len(chunks), self.path)

    def info(self) -> Dict[str, Any]:
        """Cache summary for health checks."""
        if not self.path.exists():
            return {"exists": False}
        try:
            cache = EmbeddingCacheFile.model_validate_json(self.path.read_bytes())
        except (OSError, ValueError, ValidationError):
            return {"exists": False}
        return {
            "exists": True,
            "size": len(cache.chunks),
            "created": cache.created_at.isoformat(),
            "fingerprint": cache.fingerprint,
            "embedding_model": cache.embedding_model,
            "dimension": cache.dimension,
        }
