"""
Unit tests for the cache-aware fixture data client: cache hits, stale
fallback within the soft bound, timeouts, single flight and the circuit
breaker.

Run: pytest backend/tests/test_fixture_client.py -v
"""
from __future__ import annotations

import asyncio
from datetime import date

import pytest

from ingest.cache import FixtureCache, detail_key
from ingest.client import FixtureDataClient
from shared.errors import UpstreamMalformed, UpstreamUnavailable
from shared.models.domain import FixtureStats
from shared.models.enums import FixtureStatus
from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState

from conftest import KICKOFF, FakeClock, FakeProvider, build_fixture

DAY = KICKOFF.date()


def _client(provider: FakeProvider, clock: FakeClock, **kwargs) -> FixtureDataClient:
    options = {"fetch_timeout_s": 1.0, "date_list_ttl_s": 60, "detail_ttl_s": 60, "soft_staleness_s": 900}
    options.update(kwargs)
    return FixtureDataClient(provider, FixtureCache(clock=clock), **options)


# ── Fixtures by date ────────────────────────────────────────────────────

class TestFixturesByDate:
    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.fixtures = {1: build_fixture(fixture_id=1)}
        client = _client(provider, clock)
        first = await client.fetch_fixtures_by_date(DAY)
        second = await client.fetch_fixtures_by_date(DAY)
        assert [f.fixture_id for f in first] == [f.fixture_id for f in second] == [1]
        assert provider.date_calls == [DAY]

    @pytest.mark.asyncio
    async def test_refetched_after_ttl(self, provider: FakeProvider, clock: FakeClock) -> None:
        client = _client(provider, clock)
        await client.fetch_fixtures_by_date(DAY)
        clock.advance(61)
        await client.fetch_fixtures_by_date(DAY)
        assert provider.date_calls == [DAY, DAY]

    @pytest.mark.asyncio
    async def test_stale_fallback_within_soft_bound(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.fixtures = {1: build_fixture(fixture_id=1)}
        client = _client(provider, clock)
        await client.fetch_fixtures_by_date(DAY)

        clock.advance(300)
        provider.fail_with = UpstreamUnavailable("fake", "HTTP 503")
        fixtures = await client.fetch_fixtures_by_date(DAY)
        assert [f.fixture_id for f in fixtures] == [1]
        assert all(f.stale for f in fixtures)

    @pytest.mark.asyncio
    async def test_failure_beyond_soft_bound_raises(self, provider: FakeProvider, clock: FakeClock) -> None:
        client = _client(provider, clock)
        await client.fetch_fixtures_by_date(DAY)

        clock.advance(901)
        provider.fail_with = UpstreamUnavailable("fake", "HTTP 503")
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_fixtures_by_date(DAY)

    @pytest.mark.asyncio
    async def test_failure_without_cache_raises(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.fail_with = UpstreamUnavailable("fake", "connection refused")
        with pytest.raises(UpstreamUnavailable):
            await _client(provider, clock).fetch_fixtures_by_date(DAY)

    @pytest.mark.asyncio
    async def test_malformed_without_cache_raises(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.fail_with = UpstreamMalformed("fake", "response is not a list")
        with pytest.raises(UpstreamMalformed):
            await _client(provider, clock).fetch_fixtures_by_date(DAY)

    @pytest.mark.asyncio
    async def test_timeout_is_upstream_unavailable(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.delay_s = 0.5
        client = _client(provider, clock, fetch_timeout_s=0.01)
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_fixtures_by_date(DAY)

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_fetch(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.delay_s = 0.01
        client = _client(provider, clock)
        results = await asyncio.gather(*(client.fetch_fixtures_by_date(DAY) for _ in range(5)))
        assert len(results) == 5
        assert provider.date_calls == [DAY]

    @pytest.mark.asyncio
    async def test_other_dates_fetched_separately(self, provider: FakeProvider, clock: FakeClock) -> None:
        client = _client(provider, clock)
        await client.fetch_fixtures_by_date(date(2024, 3, 9))
        await client.fetch_fixtures_by_date(date(2024, 3, 10))
        assert provider.date_calls == [date(2024, 3, 9), date(2024, 3, 10)]


# ── Fixture detail and statistics ───────────────────────────────────────

class TestFixtureDetail:
    @pytest.mark.asyncio
    async def test_finished_fixture_cached_for_good(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.fixtures = {1: build_fixture(fixture_id=1)}
        client = _client(provider, clock)
        await client.fetch_fixture_detail(1)
        clock.advance(10 ** 6)
        fixture = await client.fetch_fixture_detail(1)
        assert fixture.status == FixtureStatus.FINISHED
        assert provider.detail_calls == [1]

    @pytest.mark.asyncio
    async def test_live_fixture_refreshed(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.fixtures = {1: build_fixture(fixture_id=1, status=FixtureStatus.IN_PROGRESS)}
        client = _client(provider, clock)
        await client.fetch_fixture_detail(1)
        clock.advance(61)
        await client.fetch_fixture_detail(1)
        assert provider.detail_calls == [1, 1]

    @pytest.mark.asyncio
    async def test_unknown_fixture_is_none_and_not_cached(self, provider: FakeProvider, clock: FakeClock) -> None:
        client = _client(provider, clock)
        assert await client.fetch_fixture_detail(99) is None
        assert await client.fetch_fixture_detail(99) is None
        assert provider.detail_calls == [99, 99]
        assert client.cache.get(detail_key(99)) == (None, None)

    @pytest.mark.asyncio
    async def test_stale_detail_marked(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.fixtures = {1: build_fixture(fixture_id=1, status=FixtureStatus.IN_PROGRESS)}
        client = _client(provider, clock)
        await client.fetch_fixture_detail(1)
        clock.advance(120)
        provider.fail_with = UpstreamUnavailable("fake", "timeout")
        fixture = await client.fetch_fixture_detail(1)
        assert fixture.stale is True

    @pytest.mark.asyncio
    async def test_statistics_never_served_stale(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.stats = {1: FixtureStats(corners_home=5, corners_away=4)}
        client = _client(provider, clock)
        assert (await client.fetch_fixture_statistics(1)).corners_home == 5
        clock.advance(120)
        provider.fail_with = UpstreamUnavailable("fake", "timeout")
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_fixture_statistics(1)

    @pytest.mark.asyncio
    async def test_final_statistics_cached_for_good(self, provider: FakeProvider, clock: FakeClock) -> None:
        provider.stats = {1: FixtureStats(corners_home=5, corners_away=4)}
        client = _client(provider, clock)
        await client.fetch_fixture_statistics(1, final=True)
        clock.advance(10 ** 6)
        await client.fetch_fixture_statistics(1, final=True)
        assert provider.stats_calls == [1]


# ── Circuit breaker ─────────────────────────────────────────────────────

class TestCircuit:
    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(self, provider: FakeProvider, clock: FakeClock) -> None:
        breaker = CircuitBreaker("fake", failure_threshold=1, recovery_timeout_s=60)
        client = _client(provider, clock, circuit=breaker)
        provider.fail_with = UpstreamUnavailable("fake", "HTTP 503")
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_live_fixtures()
        with pytest.raises(CircuitBreakerOpen):
            await client.fetch_live_fixtures()
        assert provider.live_calls == 1

    @pytest.mark.asyncio
    async def test_timeouts_open_the_circuit(self, provider: FakeProvider, clock: FakeClock) -> None:
        breaker = CircuitBreaker("fake", failure_threshold=2, recovery_timeout_s=60)
        client = _client(provider, clock, fetch_timeout_s=0.01, circuit=breaker)
        provider.delay_s = 0.2
        for fixture_id in (1, 2):
            with pytest.raises(UpstreamUnavailable):
                await client.fetch_fixture_detail(fixture_id)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpen):
            await client.fetch_fixture_detail(3)
        assert provider.detail_calls == [1, 2]
