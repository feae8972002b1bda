"""
Shared fixtures: fixture/prediction builders, a scriptable upstream provider,
an in-memory prediction store and a hand-driven clock.
"""
from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
from typing import Any, Optional

import pytest

from ingest.providers.base import FixtureProvider
from settlement.store import PredictionStore
from shared.errors import PersistenceError
from shared.models.domain import Fixture, FixtureStats, PendingFilter, PredictionRecord
from shared.models.enums import FixtureStatus, PredictionStatus

KICKOFF = datetime(2024, 3, 10, 20, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(FixtureProvider):
    """
    Upstream double. Fixtures are served from `fixtures`; set `fail_with`
    to make every call raise, or `detail_errors[fixture_id]` / `date_errors[day]`
    for one fixture or one date list.
    """

    name = "fake"

    def __init__(self, fixtures: Optional[list[Fixture]] = None) -> None:
        self.fixtures: dict[int, Fixture] = {f.fixture_id: f for f in fixtures or []}
        self.stats: dict[int, FixtureStats] = {}
        self.fail_with: Optional[BaseException] = None
        self.detail_errors: dict[int, BaseException] = {}
        self.date_errors: dict[date, BaseException] = {}
        self.delay_s: float = 0.0
        self.date_calls: list[date] = []
        self.detail_calls: list[int] = []
        self.stats_calls: list[int] = []
        self.live_calls = 0

    async def _maybe_fail(self) -> None:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail_with is not None:
            raise self.fail_with

    async def fixtures_by_date(self, day: date) -> list[Fixture]:
        self.date_calls.append(day)
        await self._maybe_fail()
        if day in self.date_errors:
            raise self.date_errors[day]
        return [f for f in self.fixtures.values() if f.match_date == day]

    async def live_fixtures(self) -> list[Fixture]:
        self.live_calls += 1
        await self._maybe_fail()
        return [f for f in self.fixtures.values() if f.status == FixtureStatus.IN_PROGRESS]

    async def fixture_detail(self, fixture_id: int) -> Optional[Fixture]:
        self.detail_calls.append(fixture_id)
        await self._maybe_fail()
        if fixture_id in self.detail_errors:
            raise self.detail_errors[fixture_id]
        return self.fixtures.get(fixture_id)

    async def fixture_statistics(
        self, fixture_id: int, home_team_id: Optional[int] = None
    ) -> Optional[FixtureStats]:
        self.stats_calls.append(fixture_id)
        await self._maybe_fail()
        return self.stats.get(fixture_id)


class InMemoryPredictionStore(PredictionStore):
    """PredictionStore with the same forward-only guard as the SQL store."""

    def __init__(self, records: Optional[list[PredictionRecord]] = None) -> None:
        self.records: dict[str, PredictionRecord] = {r.id: r for r in records or []}
        self.writes: list[tuple[str, PredictionStatus, Optional[str], Optional[str]]] = []
        self.fail_select = False
        self.fail_update_for: set[str] = set()
        self.extra_rows: list[PredictionRecord] = []

    async def select_pending(self, flt: PendingFilter) -> list[PredictionRecord]:
        if self.fail_select:
            raise PersistenceError("select pending failed: connection refused")
        rows = [
            r
            for r in self.records.values()
            if not r.status.is_terminal and (flt.since is None or r.created_at >= flt.since)
        ]
        rows.sort(key=lambda r: r.created_at)
        return rows[: flt.limit] + self.extra_rows

    async def update_status(
        self,
        prediction_id: str,
        status: PredictionStatus,
        fixture_ref: Optional[int] = None,
        reason: Optional[str] = None,
        score: Optional[str] = None,
    ) -> bool:
        if prediction_id in self.fail_update_for:
            raise PersistenceError(f"update {prediction_id} failed")
        current = self.records.get(prediction_id)
        if current is None or current.status not in status.predecessors():
            return False
        update: dict[str, Any] = {"status": status}
        if fixture_ref is not None:
            update["fixture_ref"] = fixture_ref
        self.records[prediction_id] = current.model_copy(update=update)
        self.writes.append((prediction_id, status, reason, score))
        return True


def build_fixture(**overrides: Any) -> Fixture:
    data: dict[str, Any] = {
        "fixture_id": 1001,
        "match_date": KICKOFF.date(),
        "home_team": "Real Madrid",
        "away_team": "FC Barcelona",
        "kickoff": KICKOFF,
        "status": FixtureStatus.FINISHED,
        "status_code": "FT",
        "elapsed": 90,
        "home_goals": 2,
        "away_goals": 1,
        "ht_home_goals": 1,
        "ht_away_goals": 0,
        "home_team_id": 541,
        "away_team_id": 529,
        "league_name": "La Liga",
    }
    data.update(overrides)
    return Fixture(**data)


def build_prediction(**overrides: Any) -> PredictionRecord:
    data: dict[str, Any] = {
        "id": "pred-1",
        "home_team": "Real Madrid",
        "away_team": "Barcelona",
        "market_tag": "",
        "market_text": "Over 2.5 Goals",
        "created_at": datetime(2024, 3, 10, 18, 0, tzinfo=timezone.utc),
        "expected_kickoff": KICKOFF,
    }
    data.update(overrides)
    return PredictionRecord(**data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store() -> InMemoryPredictionStore:
    return InMemoryPredictionStore()
