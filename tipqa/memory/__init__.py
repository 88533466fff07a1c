"""
Memory layer: pending questions, thread log, and the embedding cache file
"""

from .pending_questions import PendingQuestion, PendingQuestionStore

__all__ = ["PendingQuestion", "PendingQuestionStore"]
