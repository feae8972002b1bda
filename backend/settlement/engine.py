"""
Settlement engine: the periodic cycle that drives matching and settlement.

Each cycle reads the non-terminal predictions fresh from the store, fetches
the fixture lists the unmatched ones need, then fans out across predictions
with bounded concurrency. A prediction is handled by exactly one task per
cycle, failures are isolated per prediction, and the store is written only
when a prediction actually moves forward, so repeating a cycle with no new
data writes nothing.
"""
from __future__ import annotations

import asyncio
import random
import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from shared.config import Settings, get_settings
from shared.errors import PersistenceError, UpstreamMalformed, UpstreamUnavailable
from shared.models.domain import (
    CycleSummary,
    Fixture,
    PendingFilter,
    PredictionRecord,
    SettlementOutcome,
)
from shared.models.enums import FixtureStatus, PredictionStatus
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, log_context
from shared.utils.metrics import (
    CYCLE_DURATION,
    CYCLE_ERRORS,
    FIXTURE_CACHE_ENTRIES,
    LIVE_PREVIEWS,
    PENDING_PREDICTIONS,
    SETTLEMENT_OUTCOMES,
)

from ingest.cache import FixtureCache
from ingest.client import FixtureDataClient
from ingest.providers.api_football import APIFootballProvider
from ingest.providers.base import FixtureProvider

from settlement.config import SettlementSettings, get_settlement_settings
from settlement.evaluator import evaluate, preview
from settlement.markets import Predicate, StatTotal, Unsupported, parse_or_unsupported
from settlement.matcher import FixtureMatcher
from settlement.store import PredictionStore, SqlPredictionStore

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SettlementEngine:
    """Runs settlement cycles: pending predictions -> match -> evaluate -> persist."""

    def __init__(
        self,
        store: PredictionStore,
        client: FixtureDataClient,
        settings: Optional[SettlementSettings] = None,
        matcher: Optional[FixtureMatcher] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._client = client
        self._settings = settings or get_settlement_settings()
        self._matcher = matcher or FixtureMatcher.from_settings(self._settings)
        self._clock = clock
        self._window = timedelta(hours=self._settings.kickoff_tolerance_h)
        self._workers = asyncio.Semaphore(self._settings.worker_concurrency)
        self._cycle_lock = asyncio.Lock()
        self._cycles = 0

    @property
    def settings(self) -> SettlementSettings:
        return self._settings

    @property
    def client(self) -> FixtureDataClient:
        return self._client

    # ── Cycle ───────────────────────────────────────────────────────────

    async def run_cycle(self, target_date: Optional[date] = None) -> CycleSummary:
        """
        Run one settlement cycle.

        Args:
            target_date: Restrict fixture lists to this day; by default the
                days around each unmatched prediction are used.

        Returns:
            CycleSummary with matched/settled/errors counters.
        """
        async with self._cycle_lock:
            self._cycles += 1
            with log_context(cycle=self._cycles):
                started = time.perf_counter()
                summary = CycleSummary(target_date=target_date)
                try:
                    await self._run(summary, target_date)
                finally:
                    elapsed = time.perf_counter() - started
                    summary.duration_ms = round(elapsed * 1000, 2)
                    CYCLE_DURATION.observe(elapsed)
                logger.info("settlement_cycle_complete", **summary.model_dump(mode="json"))
                return summary

    async def _run(self, summary: CycleSummary, target_date: Optional[date]) -> None:
        now = self._clock()
        try:
            rows = await self._store.select_pending(
                PendingFilter(
                    since=now - timedelta(hours=self._settings.lookback_hours),
                    limit=self._settings.pending_batch_limit,
                )
            )
        except PersistenceError as exc:
            logger.error("settlement_pending_load_failed", error=str(exc))
            CYCLE_ERRORS.labels(stage="select").inc()
            summary.errors += 1
            return

        # One owner per prediction id; terminal rows are never revisited
        predictions: dict[str, PredictionRecord] = {}
        for row in rows:
            if not row.status.is_terminal:
                predictions.setdefault(row.id, row)
        summary.examined = len(predictions)
        PENDING_PREDICTIONS.set(len(predictions))
        if not predictions:
            return

        unmatched = [p for p in predictions.values() if not p.is_matched]
        candidates: list[Fixture] = []
        if unmatched:
            days = self._relevant_dates(unmatched, target_date, now.date())
            live = target_date is None and any(_as_utc(p.created_at).date() == now.date() for p in unmatched)
            candidates = await self._fetch_candidates(days, summary, live=live)

        await asyncio.gather(
            *(
                self._guarded(p, candidates if not p.is_matched else [], summary)
                for p in predictions.values()
            )
        )

        self._client.cache.prune(self._settings.soft_staleness_s, self._settings.final_retention_s)
        FIXTURE_CACHE_ENTRIES.set(len(self._client.cache))

    def _relevant_dates(
        self, unmatched: Iterable[PredictionRecord], target_date: Optional[date], today: date
    ) -> list[date]:
        if target_date is not None:
            return [target_date]
        # Late kickoffs in UTC land on the previous day
        days = {today, today - timedelta(days=1)}
        for p in unmatched:
            if p.expected_kickoff is None:
                days.add(_as_utc(p.created_at).date())
                continue
            kickoff = _as_utc(p.expected_kickoff)
            first, last = (kickoff - self._window).date(), (kickoff + self._window).date()
            days.update(first + timedelta(days=i) for i in range((last - first).days + 1))
        return sorted(days)

    async def _fetch_candidates(
        self, days: list[date], summary: CycleSummary, live: bool = False
    ) -> list[Fixture]:
        async def one(day: date) -> list[Fixture]:
            try:
                return await self._client.fetch_fixtures_by_date(day)
            except (UpstreamUnavailable, UpstreamMalformed) as exc:
                logger.warning("fixture_list_unavailable", date=day.isoformat(), error=str(exc))
                CYCLE_ERRORS.labels(stage="fixture_list").inc()
                summary.errors += 1
                return []

        async def in_play() -> list[Fixture]:
            try:
                return await self._client.fetch_live_fixtures()
            except (UpstreamUnavailable, UpstreamMalformed) as exc:
                logger.warning("live_fixture_list_unavailable", error=str(exc))
                CYCLE_ERRORS.labels(stage="fixture_list").inc()
                summary.errors += 1
                return []

        fetches = [one(d) for d in days]
        if live:
            # In-play copies first: on duplicate ids the first one is kept
            fetches.insert(0, in_play())

        seen: set[int] = set()
        candidates: list[Fixture] = []
        for fixtures in await asyncio.gather(*fetches):
            for fixture in fixtures:
                if fixture.fixture_id not in seen:
                    seen.add(fixture.fixture_id)
                    candidates.append(fixture)
        return candidates

    # ── Per prediction ──────────────────────────────────────────────────

    async def _guarded(
        self, prediction: PredictionRecord, candidates: list[Fixture], summary: CycleSummary
    ) -> None:
        async with self._workers:
            try:
                await self._process(prediction, candidates, summary)
            except asyncio.CancelledError:
                raise
            except PersistenceError as exc:
                # Outcome is dropped; the row is still non-terminal and is retried next cycle
                logger.warning("settlement_persist_failed", prediction_id=prediction.id, error=str(exc))
                CYCLE_ERRORS.labels(stage="persist").inc()
                summary.errors += 1
            except UpstreamUnavailable as exc:
                logger.warning("settlement_upstream_unavailable", prediction_id=prediction.id, error=str(exc))
                CYCLE_ERRORS.labels(stage="fixture_detail").inc()
                summary.errors += 1
            except Exception as exc:
                logger.exception("settlement_prediction_error", prediction_id=prediction.id, error=str(exc))
                CYCLE_ERRORS.labels(stage="process").inc()
                summary.errors += 1

    async def _process(
        self, prediction: PredictionRecord, candidates: list[Fixture], summary: CycleSummary
    ) -> None:
        predicate = parse_or_unsupported(prediction.market_tag, prediction.market_text)
        if isinstance(predicate, Unsupported):
            # Voided before matching: no fixture is needed
            await self._persist(prediction, evaluate(predicate), prediction.fixture_ref, summary)
            return

        fixture_ref = prediction.fixture_ref
        if fixture_ref is None:
            candidate = self._matcher.match(prediction, candidates)
            if candidate is None:
                summary.unmatched += 1
                return
            fixture_ref = candidate.fixture.fixture_id
            if prediction.status == PredictionStatus.MATCHED:
                # Matched row that lost its fixture ref: the terminal write stores the new one
                logger.warning(
                    "prediction_matched_without_fixture",
                    prediction_id=prediction.id,
                    fixture_id=fixture_ref,
                )
            else:
                if not await self._store.update_status(
                    prediction.id, PredictionStatus.MATCHED, fixture_ref=fixture_ref
                ):
                    return
                summary.matched += 1

        try:
            fixture = await self._client.fetch_fixture_detail(fixture_ref)
        except UpstreamMalformed as exc:
            logger.warning("fixture_detail_malformed", prediction_id=prediction.id, fixture_id=fixture_ref, error=str(exc))
            return
        if fixture is None:
            logger.warning("fixture_detail_missing", prediction_id=prediction.id, fixture_id=fixture_ref)
            return

        fixture = await self._with_statistics(predicate, fixture)
        outcome = evaluate(predicate, fixture)

        if not outcome.result.is_terminal:
            if fixture.status.is_live:
                self._preview(prediction, predicate, fixture, summary)
            return
        if fixture.stale:
            logger.info("settlement_deferred_stale_fixture", prediction_id=prediction.id, fixture_id=fixture_ref)
            return

        await self._persist(prediction, outcome, fixture_ref, summary)

    async def _with_statistics(self, predicate: Predicate, fixture: Fixture) -> Fixture:
        if not isinstance(predicate, StatTotal) or fixture.status != FixtureStatus.FINISHED or fixture.stale:
            return fixture
        if fixture.stats is not None and fixture.stats.total(predicate.stat) is not None:
            return fixture
        try:
            stats = await self._client.fetch_fixture_statistics(
                fixture.fixture_id, fixture.home_team_id, final=True
            )
        except UpstreamMalformed as exc:
            logger.warning("fixture_statistics_malformed", fixture_id=fixture.fixture_id, error=str(exc))
            return fixture
        if stats is None:
            return fixture
        return fixture.model_copy(update={"stats": stats})

    def _preview(
        self,
        prediction: PredictionRecord,
        predicate: Predicate,
        fixture: Fixture,
        summary: CycleSummary,
    ) -> None:
        provisional = preview(predicate, fixture)
        if not provisional.result.is_terminal:
            return
        summary.previews += 1
        LIVE_PREVIEWS.labels(result=provisional.result.value).inc()
        logger.info(
            "settlement_live_preview",
            prediction_id=prediction.id,
            fixture_id=fixture.fixture_id,
            provisional=provisional.result.value,
            reason=provisional.reason,
            elapsed=fixture.elapsed,
        )

    async def _persist(
        self,
        prediction: PredictionRecord,
        outcome: SettlementOutcome,
        fixture_ref: Optional[int],
        summary: CycleSummary,
    ) -> None:
        status = outcome.result.to_status()
        updated = await self._store.update_status(
            prediction.id,
            status,
            fixture_ref=fixture_ref,
            reason=outcome.reason,
            score=outcome.score,
        )
        if not updated:
            return
        summary.settled += 1
        if status == PredictionStatus.VOID:
            summary.voided += 1
        SETTLEMENT_OUTCOMES.labels(result=status.value).inc()
        logger.info(
            "prediction_settled",
            prediction_id=prediction.id,
            fixture_id=fixture_ref,
            result=status.value,
            reason=outcome.reason,
            score=outcome.score,
        )


def build_settlement_engine(
    db: DatabaseManager,
    settings: Optional[SettlementSettings] = None,
    app_settings: Optional[Settings] = None,
    provider: Optional[FixtureProvider] = None,
) -> SettlementEngine:
    """Wire the production engine: API-Football provider, shared cache, SQL store."""
    settings = settings or get_settlement_settings()
    app_settings = app_settings or get_settings()
    provider = provider or APIFootballProvider(app_settings)
    client = FixtureDataClient(
        provider,
        FixtureCache(),
        fetch_timeout_s=settings.fetch_timeout_s,
        date_list_ttl_s=settings.date_list_ttl_s,
        detail_ttl_s=settings.detail_ttl_s,
        soft_staleness_s=settings.soft_staleness_s,
        max_in_flight=app_settings.upstream_max_in_flight,
        circuit=CircuitBreaker(
            provider.name,
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout_s=settings.circuit_recovery_s,
        ),
    )
    return SettlementEngine(SqlPredictionStore(db), client, settings)


async def run_settlement_loop(
    engine: SettlementEngine,
    interval_s: float,
    jitter: float,
    error_backoff_s: float = 30.0,
) -> None:
    """Run cycles forever with a jittered interval; only cancellation stops it."""
    while True:
        try:
            await engine.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("settlement_loop_error", error=str(e))
            await asyncio.sleep(error_backoff_s)
            continue

        j = interval_s * jitter * (2 * random.random() - 1)
        await asyncio.sleep(max(1.0, interval_s + j))
