"""
Process-local, time-windowed fixture cache.

Entries are immutable and replaced whole on write, so a reader holding an
entry never observes a half-written value. Keys:

  fixtures:date:{YYYY-MM-DD}   fixture list for one day
  fixtures:live                live fixture list
  fixture:{id}                 fixture detail
  fixture:{id}:stats           fixture statistics
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional

DATE_KEY = "fixtures:date:{day}"
LIVE_KEY = "fixtures:live"
DETAIL_KEY = "fixture:{fixture_id}"
STATS_KEY = "fixture:{fixture_id}:stats"


def date_key(day: date) -> str:
    return DATE_KEY.format(day=day.isoformat())


def detail_key(fixture_id: int) -> str:
    return DETAIL_KEY.format(fixture_id=fixture_id)


def stats_key(fixture_id: int) -> str:
    return STATS_KEY.format(fixture_id=fixture_id)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float
    ttl_s: Optional[float]  # None: never expires

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)

    def is_fresh(self, now: float) -> bool:
        return self.ttl_s is None or self.age(now) <= self.ttl_s


class FixtureCache:
    """Shared cache for fixture lists and details; clock is injectable for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        # put and prune never await; a plain lock also covers callers on other threads
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> tuple[Optional[Any], Optional[float]]:
        """Return (value, age_s) regardless of freshness, or (None, None) when absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None, None
        return entry.value, entry.age(self._clock())

    def get_fresh(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry.value

    def put(self, key: str, value: Any, ttl_s: Optional[float]) -> None:
        if isinstance(value, list):
            value = tuple(value)
        entry = CacheEntry(value=value, stored_at=self._clock(), ttl_s=ttl_s)
        with self._lock:
            self._entries[key] = entry

    def prune(self, max_age_s: float, final_max_age_s: Optional[float] = None) -> int:
        """Drop entries past their retention; returns how many were removed.

        Expiring entries go once older than max(max_age_s, ttl). Entries that
        never expire go once older than final_max_age_s, when it is given.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if _past_retention(e, now, max_age_s, final_max_age_s)]
            for k in expired:
                del self._entries[k]
        return len(expired)


def _past_retention(entry: CacheEntry, now: float, max_age_s: float, final_max_age_s: Optional[float]) -> bool:
    if entry.ttl_s is None:
        return final_max_age_s is not None and entry.age(now) > final_max_age_s
    return entry.age(now) > max(max_age_s, entry.ttl_s)
