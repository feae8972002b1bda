"""Domain enumerations for the settlement engine."""
from __future__ import annotations

from enum import Enum


class FixtureStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"

    @property
    def is_live(self) -> bool:
        return self == FixtureStatus.IN_PROGRESS

    @property
    def is_void(self) -> bool:
        return self in (FixtureStatus.POSTPONED, FixtureStatus.CANCELLED)


class PredictionStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    WON = "won"
    LOST = "lost"
    VOID = "void"

    @property
    def is_terminal(self) -> bool:
        return self in (PredictionStatus.WON, PredictionStatus.LOST, PredictionStatus.VOID)

    def predecessors(self) -> tuple["PredictionStatus", ...]:
        """Statuses a row may hold right before moving to this one."""
        if self == PredictionStatus.PENDING:
            return ()
        if self == PredictionStatus.MATCHED:
            return (PredictionStatus.PENDING,)
        return (PredictionStatus.PENDING, PredictionStatus.MATCHED)


class SettlementResult(str, Enum):
    WON = "won"
    LOST = "lost"
    PENDING = "pending"
    VOID = "void"

    @property
    def is_terminal(self) -> bool:
        return self != SettlementResult.PENDING

    def to_status(self) -> PredictionStatus:
        if self == SettlementResult.PENDING:
            raise ValueError("PENDING is not a terminal prediction status")
        return PredictionStatus(self.value)


class Period(str, Enum):
    FULL_TIME = "full_time"
    FIRST_HALF = "first_half"


class Direction(str, Enum):
    OVER = "over"
    UNDER = "under"


class Side(str, Enum):
    HOME = "home"
    DRAW = "draw"
    AWAY = "away"


class StatKind(str, Enum):
    CORNERS = "corners"
    CARDS = "cards"
