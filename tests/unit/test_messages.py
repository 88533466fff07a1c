"""Unit tests for outbound message text and the outbound queue."""
import pytest

from tipqa.reason import messages
from tipqa.reason.interfaces import AnswerOk
from tipqa.reason.tips import TipPolicy
from tipqa.utils.outbound import OutboundMessageQueue


@pytest.mark.unit
def test_tip_request_quotes_multiline_question():
    text = messages.tip_request("line one\nline two", TipPolicy())
    assert "> line one\n> line two" in text
    assert "Hey there" in text


@pytest.mark.unit
def test_format_answer_dedupes_and_caps_sources():
    result = AnswerOk(answer="Answer.", cited_chunk_ids=["a", "b", "a", "", "c", "d"])
    assert messages.format_answer(result) == "Answer.\n\n---\nSources: a, b, c"


@pytest.mark.unit
def test_format_answer_without_sources():
    assert messages.format_answer(AnswerOk(answer="  Just this.  ")) == "Just this."


@pytest.mark.unit
def test_tidy_answer_spaces_headings():
    assert messages.tidy_answer("**Steps**\n1. Do it") == "**Steps**\n\n1. Do it"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_outbound_queue_drains_per_channel():
    queue = OutboundMessageQueue()
    first = await queue.send("c1", "hello", thread_id="t1")
    await queue.send("c2", "other")
    await queue.send("c1", "again")

    drained = queue.drain("c1", limit=1)

    assert [(m.event_id, m.message, m.thread_id) for m in drained] == [(first, "hello", "t1")]
    assert len(queue) == 2
    assert [m.message for m in queue.drain()] == ["other", "again"]
    assert len(queue) == 0
