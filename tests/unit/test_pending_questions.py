"""Unit tests for the pending question store."""
from datetime import datetime, timedelta, timezone

import pytest

from tipqa.memory.pending_questions import PendingQuestionStore


@pytest.mark.unit
class TestPendingQuestionStore:
    def test_park_and_get(self):
        store = PendingQuestionStore()
        store.park("u1", "How do threads work?", "t1", "c1")

        pending = store.get("u1")
        assert pending.question == "How do threads work?"
        assert pending.thread_id == "t1"
        assert pending.channel_id == "c1"
        assert pending.tip_received is False
        assert "u1" in store
        assert len(store) == 1

    def test_get_unknown_user(self):
        assert PendingQuestionStore().get("nobody") is None

    def test_park_replaces_previous_and_resets_payment(self):
        store = PendingQuestionStore()
        store.park("u1", "first", "t1", "c1")
        store.mark_paid("u1")

        store.park("u1", "second", "t2", "c1")

        pending = store.get("u1")
        assert pending.question == "second"
        assert pending.thread_id == "t2"
        assert pending.tip_received is False
        assert len(store) == 1

    def test_mark_paid_is_idempotent(self):
        store = PendingQuestionStore()
        store.park("u1", "q", "t1", "c1")
        store.mark_paid("u1")
        store.mark_paid("u1")
        assert store.get("u1").tip_received is True

    def test_mark_paid_without_entry_is_noop(self):
        store = PendingQuestionStore()
        store.mark_paid("ghost")
        assert "ghost" not in store

    def test_clear(self):
        store = PendingQuestionStore()
        store.park("u1", "q", "t1", "c1")
        store.clear("u1")
        store.clear("u1")
        assert store.get("u1") is None

    def test_users_are_independent(self):
        store = PendingQuestionStore()
        store.park("u1", "q1", "t1", "c1")
        store.park("u2", "q2", "t2", "c1")
        store.mark_paid("u1")
        store.clear("u1")

        assert store.get("u2").question == "q2"
        assert store.get("u2").tip_received is False

    def test_purge_disabled_by_default(self):
        store = PendingQuestionStore()
        store.park("u1", "q", "t1", "c1")
        assert store.purge_expired() == 0
        assert "u1" in store

    def test_purge_expired(self):
        now = [datetime(2025, 1, 1, tzinfo=timezone.utc)]
        store = PendingQuestionStore(max_age=timedelta(minutes=30), clock=lambda: now[0])
        store.park("old", "q", "t1", "c1")
        now[0] += timedelta(minutes=20)
        store.park("new", "q", "t2", "c1")
        now[0] += timedelta(minutes=15)

        assert store.purge_expired() == 1
        assert "old" not in store
        assert "new" in store

    def test_lock_is_per_user(self):
        store = PendingQuestionStore()
        assert store.lock("u1") is store.lock("u1")
        assert store.lock("u1") is not store.lock("u2")
