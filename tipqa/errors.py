"""
Exception types raised at the service seams.

Only configuration and corpus problems are fatal; everything else is recovered
locally (cached price, cache rebuild, bounded answer retries).
"""


class TipqaError(Exception):
    """Base class for errors raised by this service."""


class ConfigurationError(TipqaError):
    """A required setting (API key, bot address, ...) is missing or invalid."""


class KnowledgeSourceError(TipqaError):
    """The knowledge corpus could not be loaded."""


class EmbeddingDimensionError(TipqaError, ValueError):
    """The embedding service returned a vector of unexpected size."""

    def __init__(self, actual: int, expected: int) -> None:
        super().__init__(f"Unexpected embedding dimension: {actual} != {expected}")
        self.actual = actual
        self.expected = expected
