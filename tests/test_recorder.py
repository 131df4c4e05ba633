"""Tests for usage recording and aggregation."""

import asyncio
import sqlite3
import tempfile

import pytest

from conftest import BrokenStore
from detect_cart.errors import InputInvalid
from detect_cart.models import UsageEvent
from detect_cart.recorder import UsageRecorder, round_half_up
from detect_cart.registry import ModelRegistry
from detect_cart.storage import InMemoryUsageStore, SQLiteUsageStore


class TestRoundHalfUp:
    """Test round_half_up."""

    def test_rounds_half_away_from_zero(self):
        assert round_half_up(5, 2) == 3
        assert round_half_up(7, 2) == 4
        assert round_half_up(10, 3) == 3
        assert round_half_up(150, 2) == 75

    def test_zero_count(self):
        assert round_half_up(0, 0) == 0


class TestRecord:
    """Test UsageRecorder.record."""

    def test_record_stores_event(self):
        """Test a valid event is stored."""
        recorder = UsageRecorder(InMemoryUsageStore())

        stored = asyncio.run(recorder.record(UsageEvent(model_id="m1", total_tokens=10, user_id="u")))

        assert stored is True
        assert len(recorder.store.list_events("u")) == 1

    def test_invalid_event_dropped(self):
        """Test invalid events are dropped, not raised."""
        recorder = UsageRecorder(InMemoryUsageStore())

        assert asyncio.run(recorder.record(UsageEvent(model_id="m1", total_tokens=0))) is False
        assert asyncio.run(recorder.record(UsageEvent(model_id="", total_tokens=5))) is False
        assert recorder.dropped == 2
        assert recorder.store.list_events() == []

    def test_store_failure_never_raises(self):
        """Test storage errors are swallowed and counted."""
        recorder = UsageRecorder(BrokenStore())

        stored = asyncio.run(recorder.record(UsageEvent(model_id="m1", total_tokens=10)))

        assert stored is False
        assert recorder.dropped == 1

    def test_record_later_and_drain(self):
        """Test background writes complete on drain."""
        recorder = UsageRecorder(InMemoryUsageStore())

        async def run():
            for tokens in (1, 2, 3):
                recorder.record_later(UsageEvent(model_id="m1", total_tokens=tokens, user_id="u"))
            assert recorder.pending == 3
            await recorder.drain()
            return recorder.pending

        assert asyncio.run(run()) == 0
        assert sorted(e.total_tokens for e in recorder.store.list_events("u")) == [1, 2, 3]

    def test_close_drains_then_closes_store(self):
        """Test close finishes pending writes before closing the SQLite connection."""
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = f"{tmpdir}/detect_cart.db"
            recorder = UsageRecorder(SQLiteUsageStore(db_path=db_path))

            async def run():
                recorder.record_later(UsageEvent(model_id="m1", total_tokens=7, user_id="u"))
                await recorder.close()

            asyncio.run(run())

            with pytest.raises(sqlite3.ProgrammingError):
                recorder.store.list_events()
            reopened = SQLiteUsageStore(db_path=db_path)
            assert [e.total_tokens for e in reopened.list_events("u")] == [7]
            reopened.close()

    def test_close_without_closable_store(self):
        """Test close works for stores with nothing to close."""
        recorder = UsageRecorder(InMemoryUsageStore())
        asyncio.run(recorder.close())
        assert recorder.pending == 0


class TestAggregate:
    """Test UsageRecorder.aggregate."""

    def test_aggregation(self):
        """Test totals, counts and averages per model."""
        recorder = UsageRecorder(InMemoryUsageStore(), ModelRegistry.default(disabled={}))

        async def run():
            for model_id, tokens in (("m1", 100), ("m1", 50), ("m2", 30)):
                await recorder.record(UsageEvent(model_id=model_id, total_tokens=tokens, user_id="u"))
            await recorder.record(UsageEvent(model_id="m1", total_tokens=999, user_id="other"))

        asyncio.run(run())
        usage = recorder.aggregate("u")

        assert usage.total_tokens == 180
        assert usage.total_calls == 3
        assert [m.to_dict() for m in usage.model_usage] == [
            {"modelId": "m1", "modelName": "m1", "totalTokens": 150, "count": 2, "averageTokens": 75},
            {"modelId": "m2", "modelName": "m2", "totalTokens": 30, "count": 1, "averageTokens": 30},
        ]

    def test_display_names_from_registry(self):
        """Test known model ids get their display name."""
        recorder = UsageRecorder(InMemoryUsageStore(), ModelRegistry.default(disabled={}))
        asyncio.run(recorder.record(UsageEvent(model_id="chat-model-claude", total_tokens=7, user_id="u")))

        usage = recorder.aggregate("u")

        assert usage.model_usage[0].display_name == "claude-3-7-sonnet-20250219"
        assert usage.to_dict()["modelUsage"][0]["modelName"] == "claude-3-7-sonnet-20250219"

    def test_average_rounds_half_up(self):
        """Test averages use round-half-up."""
        recorder = UsageRecorder(InMemoryUsageStore())

        async def run():
            await recorder.record(UsageEvent(model_id="m1", total_tokens=2, user_id="u"))
            await recorder.record(UsageEvent(model_id="m1", total_tokens=3, user_id="u"))

        asyncio.run(run())

        assert recorder.aggregate("u").model_usage[0].average_tokens == 3

    def test_empty_user(self):
        """Test a user without events has zero totals."""
        usage = UsageRecorder(InMemoryUsageStore()).aggregate("nobody")

        assert usage.to_dict() == {"totalTokens": 0, "totalCalls": 0, "modelUsage": []}

    def test_missing_user_id(self):
        """Test aggregation needs a user id."""
        with pytest.raises(InputInvalid):
            UsageRecorder(InMemoryUsageStore()).aggregate("")

    def test_sqlite_backend(self):
        """Test aggregation over the SQLite store."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SQLiteUsageStore(db_path=f"{tmpdir}/detect_cart.db")
            recorder = UsageRecorder(store)

            async def run():
                recorder.record_later(UsageEvent(model_id="m1", total_tokens=40, user_id="u"))
                recorder.record_later(UsageEvent(model_id="m1", total_tokens=41, user_id="u"))
                await recorder.drain()

            asyncio.run(run())
            usage = recorder.aggregate("u")
            store.close()

        assert usage.total_tokens == 81
        assert usage.model_usage[0].average_tokens == 41
