"""Unit tests for the SQLAlchemy-backed thread log (on a throwaway SQLite file)."""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from tipqa.database.connection import create_session_factory
from tipqa.memory.thread_store import ThreadEntry, ThreadStore, summarize_conversation


@pytest_asyncio.fixture
async def thread_store(tmp_path):
    engine, session_factory = create_session_factory(
        f"sqlite+aiosqlite:///{tmp_path / 'threads.db'}"
    )
    store = ThreadStore(session_factory, engine=engine)
    await store.init_schema()
    yield store
    await store.close()


T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_first_message_becomes_starter(thread_store):
    await thread_store.ensure_thread_starter("t1", "m1", "u1", "How do threads work?")
    await thread_store.ensure_thread_starter("t1", "m2", "u1", "Also reactions?")

    context = await thread_store.fetch_thread("t1")

    assert context.initial_prompt == "How do threads work?"
    assert [e.is_starter for e in context.conversation] == [True, False]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rerecorded_starter_keeps_flag(thread_store):
    await thread_store.ensure_thread_starter("t1", "m1", "u1", "How do threads work?")
    await thread_store.ensure_thread_starter("t1", "m2", "u1", "Also reactions?")
    await thread_store.ensure_thread_starter("t1", "m1", "u1", "How do threads work?")

    context = await thread_store.fetch_thread("t1")

    assert context.initial_prompt == "How do threads work?"
    assert {e.event_id: e.is_starter for e in context.conversation} == {"m1": True, "m2": False}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fetch_orders_by_time(thread_store):
    await thread_store.record_message(
        event_id="b", thread_id="t1", author_id="u1", content="second", created_at=T0 + timedelta(seconds=5)
    )
    await thread_store.record_message(
        event_id="a", thread_id="t1", author_id="u1", content="first", created_at=T0
    )
    await thread_store.record_message(
        event_id="x", thread_id="t2", author_id="u2", content="elsewhere", created_at=T0
    )

    context = await thread_store.fetch_thread("t1")

    assert [e.content for e in context.conversation] == ["first", "second"]
    # No starter flagged: the earliest message stands in
    assert context.initial_prompt == "first"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_is_idempotent_per_event(thread_store):
    for _ in range(2):
        await thread_store.record_message(event_id="a", thread_id="t1", author_id="u1", content="hi")

    context = await thread_store.fetch_thread("t1")

    assert len(context.conversation) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_thread(thread_store):
    assert await thread_store.fetch_thread("nope") is None


def _entry(author: str, content: str) -> ThreadEntry:
    return ThreadEntry(event_id=content, author_id=author, content=content, created_at=T0, is_starter=False)


@pytest.mark.unit
def test_summarize_conversation_roles():
    summary = summarize_conversation([_entry("u1", "question"), _entry("0xbot", "answer")], "0xbot")
    assert summary == "User: question\n\nAssistant: answer"


@pytest.mark.unit
def test_summarize_conversation_keeps_last_eight():
    entries = [_entry("u1", f"m{i}") for i in range(10)]
    summary = summarize_conversation(entries, "0xbot")
    assert summary.startswith("User: m2")
    assert summary.count("User:") == 8
