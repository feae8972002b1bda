"""
Pydantic v2 domain models shared by the settlement services.
These are the internal representations, NOT ORM models.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import FixtureStatus, PredictionStatus, SettlementResult, StatKind


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FrozenModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)


# ── Predictions ─────────────────────────────────────────────────────────
class PredictionRecord(FrozenModel):
    """A prediction row as handed over by the upstream producer."""
    id: str
    home_team: str
    away_team: str
    fixture_ref: Optional[int] = None
    market_tag: str = ""
    market_text: str = ""
    status: PredictionStatus = PredictionStatus.PENDING
    created_at: datetime
    expected_kickoff: Optional[datetime] = None

    @property
    def is_matched(self) -> bool:
        return self.fixture_ref is not None


class PendingFilter(DomainModel):
    since: Optional[datetime] = None
    limit: int = 500


# ── Fixtures ────────────────────────────────────────────────────────────
class FixtureStats(FrozenModel):
    """Per-side statistics; None means the provider did not report it."""
    corners_home: Optional[int] = None
    corners_away: Optional[int] = None
    yellow_home: Optional[int] = None
    yellow_away: Optional[int] = None
    red_home: Optional[int] = None
    red_away: Optional[int] = None

    def total(self, kind: StatKind) -> Optional[int]:
        if kind == StatKind.CORNERS:
            if self.corners_home is None or self.corners_away is None:
                return None
            return self.corners_home + self.corners_away
        if self.yellow_home is None or self.yellow_away is None:
            return None
        # Providers omit red cards when there were none
        return self.yellow_home + self.yellow_away + (self.red_home or 0) + (self.red_away or 0)


class Fixture(FrozenModel):
    fixture_id: int
    match_date: date
    home_team: str
    away_team: str
    kickoff: datetime
    status: FixtureStatus
    status_code: str = ""
    elapsed: Optional[int] = None
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None
    ht_home_goals: Optional[int] = None
    ht_away_goals: Optional[int] = None
    home_team_id: Optional[int] = None
    away_team_id: Optional[int] = None
    league_name: str = ""
    stats: Optional[FixtureStats] = None
    stale: bool = False

    @property
    def score(self) -> str:
        if self.home_goals is None or self.away_goals is None:
            return "-"
        return f"{self.home_goals}-{self.away_goals}"


# ── Matching & settlement ───────────────────────────────────────────────
class MatchCandidate(FrozenModel):
    """Ephemeral pairing of a prediction with a fixture; never persisted."""
    prediction_id: str
    fixture: Fixture
    home_similarity: float
    away_similarity: float
    score: float
    kickoff_delta_s: Optional[float] = None


class SettlementOutcome(FrozenModel):
    result: SettlementResult
    reason: str
    score: Optional[str] = None


class CycleSummary(DomainModel):
    target_date: Optional[date] = None
    examined: int = 0
    matched: int = 0
    settled: int = 0
    voided: int = 0
    unmatched: int = 0
    previews: int = 0
    errors: int = 0
    duration_ms: float = Field(default=0.0, description="Wall time of the cycle")
