"""Tests for the expiring request cache."""

from __future__ import annotations

import pytest

from access_plugins.cache import CacheEntry, MessageLocator, RequestCache
from access_plugins.context import Context
from access_plugins.errors import CacheClosed, Canceled
from access_plugins.models import Request


def _entry(request_id: str = "req-1") -> CacheEntry:
    return CacheEntry(
        request=Request(id=request_id, user="alice", roles=["admin"]),
        messages=[MessageLocator(channel_id="C1", message_id="111.222")],
    )


def _advance(cache: RequestCache, ticks: int) -> None:
    for _ in range(ticks):
        cache.tick()


def test_put_assigns_expiry_from_current_tick():
    cache = RequestCache(ttl=60)
    _advance(cache, 5)

    stored = cache.put(_entry())

    assert stored.expires_at == 65
    assert cache.get("req-1") == stored


def test_entry_survives_until_ttl_and_is_evicted_after():
    cache = RequestCache(ttl=60)
    cache.put(_entry())

    _advance(cache, 59)
    assert cache.get("req-1") is not None

    _advance(cache, 2)
    assert cache.current_tick == 61
    assert cache.pop("req-1") is None


def test_pop_at_tick_59_returns_entry():
    cache = RequestCache(ttl=60)
    cache.put(_entry())
    _advance(cache, 59)

    entry = cache.pop("req-1")

    assert entry is not None
    assert entry.messages == [MessageLocator(channel_id="C1", message_id="111.222")]
    assert cache.pop("req-1") is None


def test_sweep_keeps_entries_with_later_expiry():
    cache = RequestCache(ttl=10)
    cache.put(_entry("early"))
    _advance(cache, 5)
    cache.put(_entry("late"))

    _advance(cache, 6)

    assert cache.get("early") is None
    assert cache.get("late") is not None
    assert len(cache) == 1

    _advance(cache, 5)
    assert len(cache) == 0


def test_put_again_refreshes_expiry():
    cache = RequestCache(ttl=10)
    cache.put(_entry())
    _advance(cache, 8)

    cache.put(_entry())
    _advance(cache, 8)

    assert cache.get("req-1") is not None


def test_drop_removes_entry():
    cache = RequestCache(ttl=10)
    cache.put(_entry())

    cache.drop("req-1")
    cache.drop("unknown")

    assert cache.get("req-1") is None


def test_taint_makes_every_call_fail():
    cache = RequestCache(ttl=10)
    cache.put(_entry())

    cache.taint()

    for call in (
        lambda: cache.get("req-1"),
        lambda: cache.pop("req-1"),
        lambda: cache.put(_entry()),
        lambda: cache.drop("req-1"),
        lambda: len(cache),
    ):
        with pytest.raises(CacheClosed):
            call()


def test_cancelling_owner_context_taints_cache():
    ctx = Context.background().with_cancel()
    cache = RequestCache(ctx, ttl=10, tick_interval=3600)
    cache.put(_entry())

    ctx.cancel()

    with pytest.raises(CacheClosed) as err:
        cache.pop("req-1")
    assert isinstance(err.value, Canceled)


def test_background_ticker_advances_clock():
    ctx = Context.background().with_cancel()
    try:
        cache = RequestCache(ctx, ttl=10, tick_interval=0.01)
        assert ctx.wait(0.2) is False
        assert cache.current_tick > 0
    finally:
        ctx.cancel()


def test_invalid_ttl_raises_value_error():
    with pytest.raises(ValueError):
        RequestCache(ttl=0)
