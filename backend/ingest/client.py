"""
Cache-aware fixture data client.

All staleness and failure-tolerance policy lives here: fresh cache hits
are served directly, misses go upstream (one fetch per key at a time,
bounded in-flight requests, per-fetch timeout, circuit breaker), and an
upstream failure falls back to the last cached value while it is within
the soft staleness bound.
"""
from __future__ import annotations

import asyncio
import weakref
from datetime import date
from typing import Any, Awaitable, Callable, Optional, TypeVar

from shared.errors import UpstreamMalformed, UpstreamUnavailable
from shared.models.domain import Fixture, FixtureStats
from shared.models.enums import FixtureStatus
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_LOOKUPS

from ingest.cache import LIVE_KEY, FixtureCache, date_key, detail_key, stats_key
from ingest.providers.base import FixtureProvider

logger = get_logger(__name__)

T = TypeVar("T")


def _mark_stale(value: Any) -> Any:
    if isinstance(value, Fixture):
        return value.model_copy(update={"stale": True})
    if isinstance(value, (list, tuple)):
        return [_mark_stale(v) for v in value]
    return value


class FixtureDataClient:
    """Single entry point to upstream fixture data for the settlement engine."""

    def __init__(
        self,
        provider: FixtureProvider,
        cache: FixtureCache,
        *,
        fetch_timeout_s: float = 10.0,
        date_list_ttl_s: float = 60.0,
        detail_ttl_s: float = 60.0,
        soft_staleness_s: float = 900.0,
        max_in_flight: int = 4,
        circuit: Optional[CircuitBreaker] = None,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._fetch_timeout_s = fetch_timeout_s
        self._date_list_ttl_s = date_list_ttl_s
        self._detail_ttl_s = detail_ttl_s
        self._soft_staleness_s = soft_staleness_s
        self._in_flight = asyncio.Semaphore(max_in_flight)
        self._circuit = circuit or CircuitBreaker(provider.name)
        self._key_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def cache(self) -> FixtureCache:
        return self._cache

    async def start(self) -> None:
        await self._provider.start()

    async def close(self) -> None:
        await self._provider.close()

    # ── Public fetches ──────────────────────────────────────────────────

    async def fetch_fixtures_by_date(self, day: date) -> list[Fixture]:
        fixtures = await self._cached(
            date_key(day),
            "date",
            lambda: self._provider.fixtures_by_date(day),
            lambda _: self._date_list_ttl_s,
        )
        return list(fixtures)

    async def fetch_live_fixtures(self) -> list[Fixture]:
        fixtures = await self._cached(
            LIVE_KEY,
            "live",
            self._provider.live_fixtures,
            lambda _: self._date_list_ttl_s,
        )
        return list(fixtures)

    async def fetch_fixture_detail(self, fixture_id: int) -> Optional[Fixture]:
        return await self._cached(
            detail_key(fixture_id),
            "detail",
            lambda: self._provider.fixture_detail(fixture_id),
            self._detail_ttl,
        )

    async def fetch_fixture_statistics(
        self, fixture_id: int, home_team_id: Optional[int] = None, final: bool = False
    ) -> Optional[FixtureStats]:
        """Statistics of a fixture; pass final=True once the fixture is finished to cache them for good."""
        return await self._cached(
            stats_key(fixture_id),
            "stats",
            lambda: self._provider.fixture_statistics(fixture_id, home_team_id),
            lambda _: None if final else self._detail_ttl_s,
            allow_stale=False,
        )

    def _detail_ttl(self, fixture: Fixture) -> Optional[float]:
        # Finished fixtures no longer change
        if fixture.status == FixtureStatus.FINISHED:
            return None
        return self._detail_ttl_s

    # ── Core policy ─────────────────────────────────────────────────────

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    async def _cached(
        self,
        key: str,
        kind: str,
        loader: Callable[[], Awaitable[T]],
        ttl_for: Callable[[Any], Optional[float]],
        allow_stale: bool = True,
    ) -> T:
        fresh = self._cache.get_fresh(key)
        if fresh is not None:
            CACHE_LOOKUPS.labels(kind=kind, result="hit").inc()
            return fresh

        lock = self._lock_for(key)
        async with lock:
            fresh = self._cache.get_fresh(key)
            if fresh is not None:
                CACHE_LOOKUPS.labels(kind=kind, result="hit").inc()
                return fresh

            CACHE_LOOKUPS.labels(kind=kind, result="miss").inc()
            error: Exception
            try:
                async with self._in_flight:
                    value = await self._circuit.call(self._load, key, loader)
            except (UpstreamUnavailable, UpstreamMalformed) as exc:
                error = exc
            else:
                if value is not None:
                    self._cache.put(key, value, ttl_for(value))
                return value

            return self._fallback(key, kind, error, allow_stale)

    async def _load(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        # Raised inside the breaker call: a timeout counts as a provider failure
        try:
            return await asyncio.wait_for(loader(), timeout=self._fetch_timeout_s)
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(
                self._provider.name, f"{key}: timed out after {self._fetch_timeout_s}s"
            ) from exc

    def _fallback(self, key: str, kind: str, error: Exception, allow_stale: bool) -> Any:
        stale, age = self._cache.get(key)
        if allow_stale and stale is not None and age is not None and age <= self._soft_staleness_s:
            CACHE_LOOKUPS.labels(kind=kind, result="stale").inc()
            logger.warning(
                "fixture_cache_stale_fallback",
                key=key,
                age_s=round(age, 1),
                error=str(error),
            )
            return _mark_stale(stale)
        logger.warning("fixture_fetch_failed", key=key, error=str(error))
        raise error
