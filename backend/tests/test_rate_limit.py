from __future__ import annotations

from datetime import datetime, timedelta, timezone

from academy.models.notification import RateLimitCounter
from academy.services.rate_limit import (
    ALIMTALK_SEND_KEY,
    GatewayRateLimiter,
    InMemoryCounterStore,
    SqlCounterStore,
)

NOW = datetime(2026, 3, 2, 5, 0, 42, tzinfo=timezone.utc)


def test_window_start_is_aligned_to_the_minute():
    limiter = GatewayRateLimiter(InMemoryCounterStore(), limit=10)
    assert limiter.window_start(NOW) == datetime(2026, 3, 2, 5, 0, tzinfo=timezone.utc)


def test_in_memory_limiter_allows_up_to_limit_per_window():
    limiter = GatewayRateLimiter(InMemoryCounterStore(), limit=2)

    assert limiter.acquire(NOW) is True
    assert limiter.acquire(NOW) is True
    assert limiter.acquire(NOW) is False
    assert limiter.acquire(NOW + timedelta(seconds=18)) is True


def test_zero_limit_disables_limiting():
    store = InMemoryCounterStore()
    limiter = GatewayRateLimiter(store, limit=0)

    assert all(limiter.acquire(NOW) for _ in range(50))
    assert store._counts == {}


def test_sql_store_shares_budget_between_limiters(db, session_factory):
    store = SqlCounterStore(session_factory)
    first = GatewayRateLimiter(store, limit=3)
    second = GatewayRateLimiter(SqlCounterStore(session_factory), limit=3)

    assert first.acquire(NOW) is True
    assert second.acquire(NOW) is True
    assert first.acquire(NOW) is True
    assert second.acquire(NOW) is False

    counter = db.query(RateLimitCounter).filter(RateLimitCounter.key == ALIMTALK_SEND_KEY).one()
    assert counter.count == 4


def test_sql_store_keeps_windows_and_keys_apart(session_factory):
    store = SqlCounterStore(session_factory)
    window = datetime(2026, 3, 2, 5, 0, tzinfo=timezone.utc)

    assert store.incr("a", window) == 1
    assert store.incr("a", window) == 2
    assert store.incr("b", window) == 1
    assert store.incr("a", window + timedelta(minutes=1)) == 1
