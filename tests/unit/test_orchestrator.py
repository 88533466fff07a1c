import asyncio
import unittest
from decimal import Decimal

from test_utils import FakeGenerator, make_chunk
from tipqa.memory.pending_questions import PendingQuestionStore
from tipqa.reason.interfaces import AnswerMalformed, AnswerOk
from tipqa.reason.orchestrator import (
    AnswerOrchestrator,
    IncomingQuestion,
    IncomingTip,
    MessageOutcome,
    TipOutcome,
)

WEI = 10**18
ENOUGH = int(Decimal("0.000158") * WEI)
TOO_LITTLE = int(Decimal("0.000157") * WEI)


class FakePriceSource:
    def __init__(self, price: float = 3000.0):
        self.price = price
        self.calls = 0

    async def get_price(self) -> float:
        self.calls += 1
        return self.price


class FakeRetriever:
    def __init__(self):
        self.queries = []

    async def retrieve(self, query_text, k):
        self.queries.append((query_text, k))
        return [make_chunk("agents_md:tips", [1.0, 0.0])]


class RecordingSender:
    def __init__(self, fail_on=None):
        self.sent = []
        self.fail_on = fail_on

    async def send(self, channel_id, message, *, thread_id=None):
        if self.fail_on and self.fail_on in message:
            raise ConnectionError("transport down")
        self.sent.append((channel_id, message, thread_id))
        return f"evt-{len(self.sent)}"

    @property
    def texts(self):
        return [m for _, m, _ in self.sent]


class FakeThreadStore:
    def __init__(self):
        self.recorded = []

    async def ensure_thread_starter(self, thread_id, event_id, author_id, content):
        self.recorded.append((thread_id, event_id, author_id, content))

    async def record_message(self, *, event_id, thread_id, author_id, content, **kwargs):
        self.recorded.append((thread_id, event_id, author_id, content))

    async def fetch_thread(self, thread_id):
        return None


def _question(text="How do I tip?", user="u1", event_id="m1", **kwargs):
    kwargs.setdefault("is_mentioned", True)
    return IncomingQuestion(user_id=user, channel_id="c1", event_id=event_id, text=text, **kwargs)


def _tip(amount=ENOUGH, user="u1", receiver="0xBot"):
    return IncomingTip(user_id=user, channel_id="c1", receiver_address=receiver, amount=amount)


class AnswerOrchestratorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = PendingQuestionStore()
        self.prices = FakePriceSource()
        self.retriever = FakeRetriever()
        self.generator = FakeGenerator()
        self.sender = RecordingSender()
        self.thread_store = FakeThreadStore()

    def _orchestrator(self, **kwargs):
        return AnswerOrchestrator(
            store=self.store,
            price_source=self.prices,
            retriever=self.retriever,
            generator=self.generator,
            sender=kwargs.pop("sender", self.sender),
            bot_addresses=["0xbot", "0xApp"],
            thread_store=self.thread_store,
            bot_id="0xbot",
            **kwargs,
        )

    # -- questions ---------------------------------------------------------

    async def test_mention_parks_question_and_requests_tip(self):
        orch = self._orchestrator()

        outcome = await orch.handle_message(_question("What is a webhook?"))

        self.assertEqual(outcome, MessageOutcome.TIP_REQUESTED)
        pending = self.store.get("u1")
        self.assertEqual(pending.question, "What is a webhook?")
        self.assertFalse(pending.tip_received)
        self.assertEqual(pending.thread_id, "m1")
        self.assertEqual(len(self.sender.sent), 1)
        channel, text, thread = self.sender.sent[0]
        self.assertEqual((channel, thread), ("c1", "m1"))
        self.assertIn("$0.50", text)
        self.assertIn("> What is a webhook?", text)

    async def test_plain_channel_message_is_ignored(self):
        orch = self._orchestrator()

        outcome = await orch.handle_message(_question(is_mentioned=False))

        self.assertEqual(outcome, MessageOutcome.IGNORED)
        self.assertEqual(len(self.store), 0)
        self.assertEqual(self.sender.sent, [])

    async def test_bot_messages_are_ignored(self):
        orch = self._orchestrator()

        outcome = await orch.handle_message(_question(user="0xbot", thread_id="t1"))

        self.assertEqual(outcome, MessageOutcome.IGNORED)

    async def test_thread_reply_parks_follow_up(self):
        orch = self._orchestrator()

        outcome = await orch.handle_message(
            _question("And reactions?", thread_id="t9", is_mentioned=False)
        )

        self.assertEqual(outcome, MessageOutcome.TIP_REQUESTED)
        self.assertEqual(self.store.get("u1").thread_id, "t9")
        self.assertIn("Another question", self.sender.texts[0])

    async def test_unpaid_question_is_replaced(self):
        orch = self._orchestrator()
        await orch.handle_message(_question("first"))
        await orch.handle_message(_question("second", event_id="m2"))

        self.assertEqual(self.store.get("u1").question, "second")
        self.assertEqual(len(self.store), 1)

    # -- tips --------------------------------------------------------------

    async def test_tip_to_other_address_is_ignored(self):
        orch = self._orchestrator()
        await orch.handle_message(_question())

        outcome = await orch.handle_tip(_tip(receiver="0xsomeoneelse"))

        self.assertEqual(outcome, TipOutcome.IGNORED)
        self.assertFalse(self.store.get("u1").tip_received)
        self.assertEqual(self.prices.calls, 0)

    async def test_tip_address_match_is_case_insensitive(self):
        orch = self._orchestrator()
        await orch.handle_message(_question())

        outcome = await orch.handle_tip(_tip(receiver="0XAPP"))

        self.assertEqual(outcome, TipOutcome.ANSWERED)

    async def test_tip_without_pending_question(self):
        orch = self._orchestrator()

        outcome = await orch.handle_tip(_tip())

        self.assertEqual(outcome, TipOutcome.NO_PENDING_QUESTION)
        self.assertIn("pending question", self.sender.texts[0])
        self.assertEqual(len(self.store), 0)

    async def test_insufficient_tip_keeps_question_unpaid(self):
        orch = self._orchestrator()
        await orch.handle_message(_question())

        outcome = await orch.handle_tip(_tip(TOO_LITTLE))

        self.assertEqual(outcome, TipOutcome.INSUFFICIENT)
        self.assertFalse(self.store.get("u1").tip_received)
        self.assertEqual(self.generator.calls, [])
        self.assertIn("0.000157 ETH", self.sender.texts[-1])
        self.assertIn("0.000167 ETH", self.sender.texts[-1])

    async def test_sufficient_tip_answers_and_clears(self):
        self.generator.results = [AnswerOk(answer="Tip with onTip.", cited_chunk_ids=["agents_md:tips"])]
        orch = self._orchestrator()
        await orch.handle_message(_question("How do I tip?"))

        outcome = await orch.handle_tip(_tip())

        self.assertEqual(outcome, TipOutcome.ANSWERED)
        self.assertIsNone(self.store.get("u1"))
        self.assertEqual(self.retriever.queries, [("How do I tip?", 5)])
        self.assertIn("Tip received", self.sender.texts[-2])
        self.assertTrue(self.sender.texts[-1].startswith("Tip with onTip."))
        self.assertIn("Sources: agents_md:tips", self.sender.texts[-1])
        self.assertEqual(self.sender.sent[-1][2], "m1")
        self.assertIn(("m1", "evt-3", "0xbot", self.sender.texts[-1]), self.thread_store.recorded)

    async def test_malformed_twice_keeps_payment(self):
        self.generator.results = [AnswerMalformed("x"), AnswerMalformed("y")]
        orch = self._orchestrator()
        await orch.handle_message(_question())

        outcome = await orch.handle_tip(_tip())

        self.assertEqual(outcome, TipOutcome.ANSWER_FAILED)
        self.assertEqual(len(self.generator.calls), 2)
        self.assertTrue(self.store.get("u1").tip_received)
        self.assertIn("payment is still valid", self.sender.texts[-1])

    async def test_second_attempt_can_succeed(self):
        self.generator.results = [RuntimeError("llm down"), AnswerOk(answer="Recovered.")]
        orch = self._orchestrator()
        await orch.handle_message(_question())

        outcome = await orch.handle_tip(_tip())

        self.assertEqual(outcome, TipOutcome.ANSWERED)
        self.assertIsNone(self.store.get("u1"))

    async def test_retry_after_failure_needs_no_new_tip(self):
        self.generator.results = [
            AnswerMalformed("x"),
            AnswerMalformed("y"),
            AnswerOk(answer="Finally."),
        ]
        orch = self._orchestrator()
        await orch.handle_message(_question("How do I tip?"))
        await orch.handle_tip(_tip())
        price_calls = self.prices.calls

        outcome = await orch.handle_message(
            _question("please retry", thread_id="m1", is_mentioned=False, event_id="m2")
        )

        self.assertEqual(outcome, MessageOutcome.ANSWERED)
        self.assertEqual(self.prices.calls, price_calls)
        self.assertEqual(self.generator.calls[-1][2], "How do I tip?")
        self.assertIsNone(self.store.get("u1"))
        self.assertTrue(self.sender.texts[-1].startswith("Finally."))

    async def test_paid_retry_that_fails_again_keeps_payment(self):
        self.generator.results = [AnswerMalformed(str(i)) for i in range(4)]
        orch = self._orchestrator()
        await orch.handle_message(_question("How do I tip?"))
        await orch.handle_tip(_tip())
        price_calls = self.prices.calls

        outcome = await orch.handle_message(
            _question("again?", thread_id="m1", is_mentioned=False, event_id="m2")
        )

        self.assertEqual(outcome, MessageOutcome.ANSWER_FAILED)
        self.assertEqual(len(self.generator.calls), 4)
        self.assertEqual(self.prices.calls, price_calls)
        pending = self.store.get("u1")
        self.assertTrue(pending.tip_received)
        self.assertEqual(pending.question, "How do I tip?")
        self.assertIn("payment is still valid", self.sender.texts[-1])

    async def test_tip_does_not_rewrite_thread_starter(self):
        orch = self._orchestrator()
        await orch.handle_message(
            _question("And reactions?", thread_id="t9", is_mentioned=False, event_id="m5")
        )

        await orch.handle_tip(_tip())

        user_rows = [row for row in self.thread_store.recorded if row[2] == "u1"]
        self.assertEqual(user_rows, [("t9", "m5", "u1", "And reactions?")])
        self.assertNotIn("t9", [row[1] for row in self.thread_store.recorded])

    async def test_second_tip_while_paid_is_not_revalidated(self):
        self.generator.results = [AnswerMalformed("x"), AnswerMalformed("y")]
        orch = self._orchestrator()
        await orch.handle_message(_question())
        await orch.handle_tip(_tip())
        price_calls = self.prices.calls

        outcome = await orch.handle_tip(_tip(TOO_LITTLE))

        self.assertEqual(outcome, TipOutcome.ALREADY_PAID)
        self.assertEqual(self.prices.calls, price_calls)
        self.assertTrue(self.store.get("u1").tip_received)

    async def test_new_question_after_answer_needs_new_tip(self):
        orch = self._orchestrator()
        await orch.handle_message(_question("first"))
        await orch.handle_tip(_tip())

        outcome = await orch.handle_message(_question("second", event_id="m2"))

        self.assertEqual(outcome, MessageOutcome.TIP_REQUESTED)
        self.assertFalse(self.store.get("u1").tip_received)

    async def test_failed_delivery_keeps_payment(self):
        self.generator.results = [AnswerOk(answer="UNDELIVERABLE")]
        orch = self._orchestrator(sender=RecordingSender(fail_on="UNDELIVERABLE"))
        await orch.handle_message(_question())

        with self.assertRaises(ConnectionError):
            await orch.handle_tip(_tip())

        self.assertTrue(self.store.get("u1").tip_received)

    async def test_concurrent_tips_answer_once(self):
        orch = self._orchestrator()
        await orch.handle_message(_question())

        outcomes = await asyncio.gather(orch.handle_tip(_tip()), orch.handle_tip(_tip()))

        self.assertEqual(sorted(o.value for o in outcomes), ["answered", "no_pending_question"])
        self.assertEqual(len(self.generator.calls), 1)

    async def test_requires_a_bot_address(self):
        with self.assertRaises(ValueError):
            AnswerOrchestrator(
                store=self.store,
                price_source=self.prices,
                retriever=self.retriever,
                generator=self.generator,
                sender=self.sender,
                bot_addresses=[],
            )


if __name__ == "__main__":
    unittest.main()
