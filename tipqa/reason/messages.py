"""User-facing message text emitted by the orchestrator."""

from __future__ import annotations

import re
from decimal import Decimal
from typing import List

from tipqa.reason.interfaces import AnswerOk
from tipqa.reason.tips import TipEvaluation, TipPolicy

MAX_REFERENCES = 3

_HEADING_NO_GAP = re.compile(r"\*\*([^*]+)\*\*\n(?!\n)")
_FENCE_OPEN_AFTER_TEXT = re.compile(r"\n```")
_FENCE_BODY_NO_GAP = re.compile(r"```\n([^`])")


def _asset(amount: Decimal, policy: TipPolicy) -> str:
    return f"{policy.quantize(amount):f} {policy.asset_symbol}"


def _usd(amount: Decimal) -> str:
    return f"${amount:.2f}"


def quote_block(question: str) -> str:
    return "\n".join(f"> {line}" for line in question.strip().splitlines() or [""])


def tip_request(question: str, policy: TipPolicy, *, follow_up: bool = False) -> str:
    opener = (
        "**Another question? Happy to help!**"
        if follow_up
        else "**Hey there!** I'd love to help you with that question!"
    )
    return (
        f"{opener}\n\n"
        f"To unlock the answer, please **tip {_usd(policy.minimum_usd)} (or more!)** on this message.\n\n"
        "Once the tip arrives I'll search the documentation and reply here with a detailed answer.\n\n"
        f"**Your Question:**\n{quote_block(question)}"
    )


def tip_too_small(evaluation: TipEvaluation, policy: TipPolicy) -> str:
    return (
        "**Thanks for the tip!** But that's a bit too small...\n\n"
        f"You tipped {_asset(evaluation.asset_amount, policy)} (~{_usd(evaluation.quote_value)}). "
        f"I need at least {_usd(policy.minimum_usd)} to unlock the answer, "
        f"so you're about {_asset(evaluation.shortfall_asset, policy)} short.\n\n"
        f"Please tip at least {_asset(evaluation.required_asset, policy)} (~{_usd(policy.minimum_usd)}) "
        "on my previous message to get your answer!\n\n"
        f"*Current {policy.asset_symbol} price: {_usd(evaluation.price)}*"
    )


def tip_confirmed(evaluation: TipEvaluation, policy: TipPolicy) -> str:
    return (
        f"**Tip received!** Thank you for the {_asset(evaluation.asset_amount, policy)} tip!\n\n"
        "Let me dig through the documentation and get you that answer..."
    )


def no_pending_question() -> str:
    return (
        "**Thanks for the tip!**\n\n"
        "I don't have a pending question from you though. Mention me with a question to get started!"
    )


def already_paid() -> str:
    return (
        "**No second payment needed!** Your earlier tip is still valid.\n\n"
        "Just send any message in the thread and I'll try answering your question again."
    )


def retrying_paid_question() -> str:
    return "Your tip is still valid, so no payment needed. Retrying your question now..."


def answer_failed() -> str:
    return (
        "Sorry, I couldn't put together a proper answer this time.\n\n"
        "**Your payment is still valid.** Reply in this thread (anything works) and I'll "
        "try again at no extra cost."
    )


def tidy_answer(answer: str) -> str:
    """Blank line after bold headings and around code fences."""
    cleaned = answer.strip()
    cleaned = _HEADING_NO_GAP.sub(r"**\1**\n\n", cleaned)
    cleaned = _FENCE_OPEN_AFTER_TEXT.sub("\n\n```", cleaned)
    cleaned = _FENCE_BODY_NO_GAP.sub(r"```\n\n\1", cleaned)
    return cleaned


def unique_references(references: List[str], limit: int = MAX_REFERENCES) -> List[str]:
    seen: List[str] = []
    for ref in references:
        if ref and ref not in seen:
            seen.append(ref)
    return seen[:limit]


def format_answer(result: AnswerOk) -> str:
    refs = unique_references(result.cited_chunk_ids)
    footer = f"\n\n---\nSources: {', '.join(refs)}" if refs else ""
    return f"{tidy_answer(result.answer)}{footer}"
