"""Fixed-window rate limiting for gateway sends.

The counter lives in an injected ``CounterStore`` so several worker processes
share one budget. ``SqlCounterStore`` keeps the counters in the database;
``InMemoryCounterStore`` is for a single process.
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academy.models.notification import RateLimitCounter

ALIMTALK_SEND_KEY = "alimtalk:send"


class CounterStore(Protocol):
    def incr(self, key: str, window_start: datetime) -> int:
        """Increment the counter for (key, window) and return the new value."""
        ...


class InMemoryCounterStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[tuple[str, datetime], int] = {}

    def incr(self, key: str, window_start: datetime) -> int:
        with self._lock:
            # Only the current window matters; drop older ones.
            for stale in [k for k in self._counts if k[0] == key and k[1] < window_start]:
                del self._counts[stale]
            value = self._counts.get((key, window_start), 0) + 1
            self._counts[(key, window_start)] = value
            return value


class SqlCounterStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def _bump(self, db: Session, key: str, window_start: datetime) -> int:
        return (
            db.query(RateLimitCounter)
            .filter(RateLimitCounter.key == key, RateLimitCounter.window_start == window_start)
            .update({RateLimitCounter.count: RateLimitCounter.count + 1}, synchronize_session=False)
        )

    def incr(self, key: str, window_start: datetime) -> int:
        with self._session_factory() as db:
            if not self._bump(db, key, window_start):
                db.add(RateLimitCounter(key=key, window_start=window_start, count=1))
                try:
                    db.commit()
                except IntegrityError:
                    # Another worker opened the window first.
                    db.rollback()
                    self._bump(db, key, window_start)
                    db.commit()
            else:
                db.commit()
            value = (
                db.query(RateLimitCounter.count)
                .filter(RateLimitCounter.key == key, RateLimitCounter.window_start == window_start)
                .scalar()
            )
            return int(value or 0)


class GatewayRateLimiter:
    def __init__(
        self,
        store: CounterStore,
        *,
        limit: int,
        window_seconds: int = 60,
        key: str = ALIMTALK_SEND_KEY,
    ) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.key = key

    def window_start(self, now: datetime) -> datetime:
        epoch = int(now.timestamp())
        start = epoch - (epoch % self.window_seconds)
        return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=start)

    def acquire(self, now: datetime) -> bool:
        if self.limit <= 0:
            return True
        return self.store.incr(self.key, self.window_start(now)) <= self.limit
