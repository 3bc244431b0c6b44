"""
Tests for the in-memory cache, in-flight table and cancel tokens.
"""

import threading
from concurrent.futures import Future

import pytest

from src.habitat.cache import CancelToken, InFlightEntry, InFlightTable, TimedCache
from src.habitat.errors import FetchCancelled


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTimedCache:
    """TTL expiry."""

    def test_get_returns_stored_value(self):
        cache = TimedCache(ttl=60)
        cache.set("a", 1)

        assert cache.get("a") == 1
        assert cache.get("missing") is None

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TimedCache(ttl=60, clock=clock)
        cache.set("a", 1)

        clock.now += 59
        assert cache.get("a") == 1

        clock.now += 2
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_set_refreshes_expiry(self):
        clock = FakeClock()
        cache = TimedCache(ttl=60, clock=clock)
        cache.set("a", 1)
        clock.now += 50
        cache.set("a", 2)
        clock.now += 50

        assert cache.get("a") == 2

    def test_clear(self):
        cache = TimedCache(ttl=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()

        assert len(cache) == 0


class TestInFlightTable:
    """Coalescing and bulk cancellation."""

    def _entry(self):
        token = CancelToken()
        return InFlightEntry(Future(), token.cancel), token

    def test_setdefault_coalesces(self):
        table = InFlightTable()
        first, _ = self._entry()
        second, _ = self._entry()

        entry, created = table.setdefault("k", lambda: first)
        joined, joined_created = table.setdefault("k", lambda: second)

        assert created is True
        assert joined_created is False
        assert joined is first

    def test_delete_only_removes_matching_entry(self):
        table = InFlightTable()
        old, _ = self._entry()
        new, _ = self._entry()
        table.set("k", new)

        table.delete("k", old)
        assert table.get("k") is new

        table.delete("k", new)
        assert table.get("k") is None

    def test_cancel_all_cancels_and_clears(self):
        table = InFlightTable()
        tokens = []
        for key in ("a", "b", "c"):
            entry, token = self._entry()
            table.set(key, entry)
            tokens.append(token)

        assert table.cancel_all() == 3
        assert len(table) == 0
        assert all(token.cancelled for token in tokens)

    def test_cancel_all_on_empty_table(self):
        assert InFlightTable().cancel_all() == 0


class TestCancelToken:

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.raise_if_cancelled()

        token.cancel()
        with pytest.raises(FetchCancelled):
            token.raise_if_cancelled()

    def test_callbacks_run_once(self):
        token = CancelToken()
        calls = []
        token.add_callback(lambda: calls.append(1))

        token.cancel()
        token.cancel()
        assert calls == [1]

    def test_callback_added_after_cancel_runs_immediately(self):
        token = CancelToken()
        token.cancel()
        calls = []
        token.add_callback(lambda: calls.append(1))

        assert calls == [1]

    def test_parent_cancels_child(self):
        parent = CancelToken()
        child = CancelToken(parent)

        parent.cancel()
        assert child.cancelled

    def test_child_does_not_cancel_parent(self):
        parent = CancelToken()
        child = CancelToken(parent)

        child.cancel()
        assert not parent.cancelled

    def test_wait_interrupted_by_cancel(self):
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()

        with pytest.raises(FetchCancelled):
            token.wait(10)

    def test_wait_completes_without_cancel(self):
        CancelToken().wait(0)
