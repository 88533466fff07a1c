"""
Answer Orchestrator

Ties the pending-question store, the price oracle and the knowledge index
together. Per user and pending question:

    AwaitingTip --qualifying tip--> Paid-AwaitingAnswer --answer delivered--> (cleared)
                                          ^                |
                                          +--all attempts failed (next message retries)

A payment is never lost to an answering failure: once a tip qualified, the
entry stays flagged ``tip_received`` until an answer is actually delivered.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Set

from tipqa.memory.pending_questions import PendingQuestion, PendingQuestionStore
from tipqa.memory.thread_store import ThreadStore, summarize_conversation
from tipqa.reason import messages
from tipqa.reason.interfaces import (
    AnswerGenerationService,
    AnswerOk,
    MessageSender,
    PriceSource,
    Retriever,
)
from tipqa.reason.tips import TipPolicy, evaluate_tip
from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="payments")

DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_TOP_K = 5


class TipOutcome(str, enum.Enum):
    IGNORED = "ignored"
    NO_PENDING_QUESTION = "no_pending_question"
    ALREADY_PAID = "already_paid"
    INSUFFICIENT = "insufficient"
    ANSWERED = "answered"
    ANSWER_FAILED = "answer_failed"


class MessageOutcome(str, enum.Enum):
    IGNORED = "ignored"
    TIP_REQUESTED = "tip_requested"
    ANSWERED = "answered"
    ANSWER_FAILED = "answer_failed"


@dataclass(frozen=True)
class IncomingQuestion:
    user_id: str
    channel_id: str
    event_id: str
    text: str
    thread_id: Optional[str] = None
    is_mentioned: bool = False

    @property
    def effective_thread_id(self) -> str:
        return self.thread_id or self.event_id


@dataclass(frozen=True)
class IncomingTip:
    user_id: str
    channel_id: str
    receiver_address: str
    amount: int  # smallest units (wei)
    event_id: Optional[str] = None


class AnswerOrchestrator:
    def __init__(
        self,
        *,
        store: PendingQuestionStore,
        price_source: PriceSource,
        retriever: Retriever,
        generator: AnswerGenerationService,
        sender: MessageSender,
        bot_addresses: Iterable[str],
        policy: Optional[TipPolicy] = None,
        thread_store: Optional[ThreadStore] = None,
        bot_id: Optional[str] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.price_source = price_source
        self.retriever = retriever
        self.generator = generator
        self.sender = sender
        self.policy = policy or TipPolicy()
        self.thread_store = thread_store
        self.bot_id = bot_id
        self.max_attempts = max_attempts
        self.top_k = top_k
        self._bot_addresses: Set[str] = {a.lower() for a in bot_addresses if a}
        if not self._bot_addresses:
            raise ValueError("At least one bot address is required")

    def is_bot_address(self, address: str) -> bool:
        return bool(address) and address.lower() in self._bot_addresses

    # ------------------------------------------------------------------
    # Tip events
    # ------------------------------------------------------------------

    async def handle_tip(self, tip: IncomingTip) -> TipOutcome:
        if not self.is_bot_address(tip.receiver_address):
            logger.info("Tip from %s not addressed to the bot, ignoring", tip.user_id)
            return TipOutcome.IGNORED

        async with self.store.lock(tip.user_id):
            pending = self.store.get(tip.user_id)
            if pending is None:
                await self.sender.send(tip.channel_id, messages.no_pending_question())
                return TipOutcome.NO_PENDING_QUESTION

            if pending.tip_received:
                # Paid earlier and answering failed; this tip is a voluntary extra
                logger.info(
                    "Tip of %s from %s while already paid; not re-validated",
                    tip.amount,
                    tip.user_id,
                )
                await self.sender.send(
                    pending.channel_id, messages.already_paid(), thread_id=pending.thread_id
                )
                return TipOutcome.ALREADY_PAID

            price = await self.price_source.get_price()
            evaluation = evaluate_tip(tip.amount, price, self.policy)
            logger.info(
                "Tip from %s: %s %s (~$%.2f) at price %s, minimum %s",
                tip.user_id,
                evaluation.asset_amount,
                self.policy.asset_symbol,
                evaluation.quote_value,
                evaluation.price,
                evaluation.minimum_asset,
            )

            if not evaluation.accepted:
                await self.sender.send(
                    pending.channel_id,
                    messages.tip_too_small(evaluation, self.policy),
                    thread_id=pending.thread_id,
                )
                return TipOutcome.INSUFFICIENT

            await self.sender.send(
                pending.channel_id,
                messages.tip_confirmed(evaluation, self.policy),
                thread_id=pending.thread_id,
            )

            answered = await self._answer(pending)
            return TipOutcome.ANSWERED if answered else TipOutcome.ANSWER_FAILED

    # ------------------------------------------------------------------
    # Questions and thread replies
    # ------------------------------------------------------------------

    async def handle_message(self, question: IncomingQuestion) -> MessageOutcome:
        if self.bot_id is not None and question.user_id == self.bot_id:
            return MessageOutcome.IGNORED
        if not question.is_mentioned and not question.thread_id:
            return MessageOutcome.IGNORED
        text = question.text.strip()
        if not text:
            return MessageOutcome.IGNORED

        thread_id = question.effective_thread_id
        await self._log_to_thread(thread_id, question.event_id, question.user_id, text)

        async with self.store.lock(question.user_id):
            pending = self.store.get(question.user_id)
            if pending is not None and pending.tip_received:
                logger.info("Paid retry for %s triggered by new message", question.user_id)
                await self.sender.send(
                    pending.channel_id,
                    messages.retrying_paid_question(),
                    thread_id=pending.thread_id,
                )
                answered = await self._answer(pending)
                return MessageOutcome.ANSWERED if answered else MessageOutcome.ANSWER_FAILED

            self.store.park(question.user_id, text, thread_id, question.channel_id)
            await self.sender.send(
                question.channel_id,
                messages.tip_request(text, self.policy, follow_up=not question.is_mentioned),
                thread_id=thread_id,
            )
            return MessageOutcome.TIP_REQUESTED

    # ------------------------------------------------------------------
    # Answering
    # ------------------------------------------------------------------

    async def _log_to_thread(
        self, thread_id: str, event_id: str, author_id: str, content: str
    ) -> None:
        if self.thread_store is None:
            return
        try:
            await self.thread_store.ensure_thread_starter(thread_id, event_id, author_id, content)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to record message in thread %s: %s", thread_id, exc)

    async def _conversation_summary(self, thread_id: str) -> str:
        if self.thread_store is None:
            return ""
        try:
            context = await self.thread_store.fetch_thread(thread_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to load thread %s context: %s", thread_id, exc)
            return ""
        if context is None:
            return ""
        return summarize_conversation(context.conversation, self.bot_id)

    async def _attempt(self, pending: PendingQuestion, system_context: str) -> Optional[AnswerOk]:
        chunks = await self.retriever.retrieve(pending.question, self.top_k)
        result = await self.generator.generate(system_context, chunks, pending.question)
        return result if isinstance(result, AnswerOk) else None

    async def _answer(self, pending: PendingQuestion) -> bool:
        """Try to answer a paid question; caller holds the user's lock."""
        system_context = await self._conversation_summary(pending.thread_id)

        answer: Optional[AnswerOk] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                answer = await self._attempt(pending, system_context)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Answer attempt %s/%s for %s raised", attempt, self.max_attempts, pending.user_id
                )
                answer = None
            if answer is not None:
                break
            logger.warning(
                "Answer attempt %s/%s for %s failed", attempt, self.max_attempts, pending.user_id
            )

        if answer is None:
            self.store.mark_paid(pending.user_id)
            await self.sender.send(
                pending.channel_id, messages.answer_failed(), thread_id=pending.thread_id
            )
            return False

        text = messages.format_answer(answer)
        try:
            event_id = await self.sender.send(
                pending.channel_id, text, thread_id=pending.thread_id
            )
        except Exception:
            # Not delivered: keep the payment valid for a retry
            self.store.mark_paid(pending.user_id)
            raise

        self.store.clear(pending.user_id)
        logger.info("Question answered and cleared for user %s", pending.user_id)

        if self.thread_store is not None and self.bot_id is not None:
            try:
                await self.thread_store.record_message(
                    event_id=event_id,
                    thread_id=pending.thread_id,
                    author_id=self.bot_id,
                    content=text,
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to record answer in thread %s: %s", pending.thread_id, exc)
        return True
