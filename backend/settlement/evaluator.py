"""
Settlement evaluator.

evaluate() is a pure, total function over the predicate variants: only a
finished fixture can produce WON or LOST, postponed/cancelled fixtures and
unreadable markets are VOID, everything else is PENDING. preview() gives
the provisional outcome a live score already implies; it is for display
and logs only and must never be persisted.
"""
from __future__ import annotations

from typing import Optional

from shared.models.domain import Fixture, SettlementOutcome
from shared.models.enums import Direction, FixtureStatus, Period, SettlementResult, Side

from settlement.markets import (
    BothTeamsToScore,
    MatchWinner,
    Predicate,
    StatTotal,
    TotalGoals,
    Unsupported,
)


def _outcome(result: SettlementResult, reason: str, fixture: Optional[Fixture]) -> SettlementOutcome:
    return SettlementOutcome(result=result, reason=reason, score=fixture.score if fixture else None)


def _window_goals(fixture: Fixture, period: Period) -> Optional[tuple[int, int]]:
    if period == Period.FIRST_HALF:
        home, away = fixture.ht_home_goals, fixture.ht_away_goals
    else:
        home, away = fixture.home_goals, fixture.away_goals
    if home is None or away is None:
        return None
    return home, away


def _compare(value: int, direction: Direction, threshold: float) -> SettlementResult:
    if value == threshold:
        # Whole-number line landed exactly: stake returned
        return SettlementResult.VOID
    over = value > threshold
    if direction == Direction.OVER:
        return SettlementResult.WON if over else SettlementResult.LOST
    return SettlementResult.LOST if over else SettlementResult.WON


def _goals_for(goals: tuple[int, int], team: Optional[Side]) -> int:
    home, away = goals
    if team == Side.HOME:
        return home
    if team == Side.AWAY:
        return away
    return home + away


def evaluate(predicate: Predicate, fixture: Optional[Fixture] = None) -> SettlementOutcome:
    """
    Outcome of a predicate against a fixture.

    An Unsupported predicate is VOID with or without a fixture; any other
    predicate stays PENDING until its fixture is known.
    """
    if isinstance(predicate, Unsupported):
        return _outcome(SettlementResult.VOID, f"unsupported market: {predicate.reason}", fixture)

    if fixture is None:
        return _outcome(SettlementResult.PENDING, "fixture unknown", None)

    if fixture.status.is_void:
        return _outcome(SettlementResult.VOID, f"fixture {fixture.status.value}", fixture)

    if fixture.status != FixtureStatus.FINISHED:
        return _outcome(
            SettlementResult.PENDING,
            f"fixture {fixture.status.value} ({fixture.status_code or '?'})",
            fixture,
        )

    if isinstance(predicate, StatTotal):
        total = fixture.stats.total(predicate.stat) if fixture.stats else None
        if total is None:
            return _outcome(SettlementResult.VOID, f"{predicate.stat.value} statistics missing", fixture)
        result = _compare(total, predicate.direction, predicate.threshold)
        return _outcome(result, f"{predicate}: {total}", fixture)

    goals = _window_goals(fixture, predicate.period)
    if goals is None:
        return _outcome(SettlementResult.VOID, f"{predicate.period.value} score missing", fixture)
    home, away = goals

    if isinstance(predicate, TotalGoals):
        total = _goals_for(goals, predicate.team)
        result = _compare(total, predicate.direction, predicate.threshold)
        return _outcome(result, f"{predicate}: {total}", fixture)

    if isinstance(predicate, MatchWinner):
        if home > away:
            actual = Side.HOME
        elif away > home:
            actual = Side.AWAY
        else:
            actual = Side.DRAW
        result = SettlementResult.WON if actual == predicate.side else SettlementResult.LOST
        return _outcome(result, f"{predicate}: {home}-{away}", fixture)

    if isinstance(predicate, BothTeamsToScore):
        both = home > 0 and away > 0
        result = SettlementResult.WON if both == predicate.expected else SettlementResult.LOST
        return _outcome(result, f"{predicate}: {home}-{away}", fixture)

    raise TypeError(f"unknown predicate {predicate!r}")


def preview(predicate: Predicate, fixture: Fixture) -> SettlementOutcome:
    """Provisional outcome for an in-progress fixture; same as evaluate() otherwise."""
    if fixture.status != FixtureStatus.IN_PROGRESS or isinstance(predicate, Unsupported):
        return evaluate(predicate, fixture)

    pending = _outcome(SettlementResult.PENDING, "live: undecided", fixture)
    if isinstance(predicate, (TotalGoals, BothTeamsToScore)):
        goals = _window_goals(fixture, predicate.period)
        if goals is None and predicate.period == Period.FIRST_HALF and fixture.status_code == "1H":
            # Half-time score appears only after the break; during the first half the live score is it
            goals = _window_goals(fixture, Period.FULL_TIME)
        if goals is None:
            return pending
        if isinstance(predicate, TotalGoals):
            total = _goals_for(goals, predicate.team)
            if total > predicate.threshold:
                result = (
                    SettlementResult.WON if predicate.direction == Direction.OVER else SettlementResult.LOST
                )
                return _outcome(result, f"live: {predicate}: {total} already", fixture)
            return pending
        if goals[0] > 0 and goals[1] > 0:
            result = SettlementResult.WON if predicate.expected else SettlementResult.LOST
            return _outcome(result, f"live: {predicate}: both scored", fixture)
    return pending
