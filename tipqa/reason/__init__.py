"""Reasoning layer: tip validation, answer generation, and the orchestrator."""

from .interfaces import AnswerMalformed, AnswerOk, GenerationResult

__all__ = ["AnswerMalformed", "AnswerOk", "GenerationResult"]
