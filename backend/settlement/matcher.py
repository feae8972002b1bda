"""
Fixture matcher.

Links a prediction's free-text team names to one fixture of the candidate
set. Both sides are compared independently on their normalized names so a
strong home match cannot carry a weak away match, and the kickoff window
keeps same-name fixtures on other days out.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from functools import lru_cache, partial
from typing import Iterable, Mapping, Optional

from rapidfuzz import fuzz

from ingest.normalization.team_names import build_alias_table, normalize_team_name
from shared.errors import NoMatch
from shared.models.domain import Fixture, MatchCandidate, PredictionRecord
from shared.utils.logging import get_logger
from shared.utils.metrics import MATCH_ATTEMPTS

from settlement.config import SettlementSettings

logger = get_logger(__name__)

SUBSET_PENALTY = 0.05

_SQUAD_MARKER = re.compile(
    r"\b(u ?(?:1[5-9]|2[0-3])|ii|iii|b|w|women|womens|ladies|femenino|feminino|kadin|reserves|youth)\b"
)


def squad_markers(name: str) -> frozenset[str]:
    """Youth, reserve and women's markers of a normalized name ("real madrid u19" -> {"u19"})."""
    return frozenset(m.replace(" ", "") for m in _SQUAD_MARKER.findall(name))


def name_similarity(a: str, b: str) -> float:
    """
    Similarity in [0, 1] of two already-normalized names.

    Names of different squads ("real madrid" / "real madrid u19") never match.
    When one name's tokens are a subset of the other's ("bayern" / "bayern munich")
    the token-set ratio applies, less SUBSET_PENALTY per extra token, so only an
    exact name scores 1.0. Otherwise the token-sort ratio, so names sharing
    only a common word ("real madrid" / "real sociedad") stay below threshold.
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if squad_markers(a) != squad_markers(b):
        return 0.0
    ta, tb = set(a.split()), set(b.split())
    if ta == tb:
        return 1.0
    if ta <= tb or tb <= ta:
        return max(0.0, fuzz.token_set_ratio(a, b) / 100.0 - SUBSET_PENALTY * len(ta ^ tb))
    return fuzz.token_sort_ratio(a, b) / 100.0


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FixtureMatcher:
    """Pure matcher: no I/O, deterministic for a given candidate list."""

    def __init__(
        self,
        kickoff_tolerance: timedelta = timedelta(hours=6),
        per_side_threshold: float = 0.6,
        acceptance_threshold: float = 0.75,
        aliases: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.kickoff_tolerance = kickoff_tolerance
        self.per_side_threshold = per_side_threshold
        self.acceptance_threshold = max(acceptance_threshold, per_side_threshold)
        table = build_alias_table(aliases)
        self._normalize = lru_cache(maxsize=8192)(partial(normalize_team_name, aliases=table))

    @classmethod
    def from_settings(cls, settings: SettlementSettings) -> "FixtureMatcher":
        return cls(
            kickoff_tolerance=timedelta(hours=settings.kickoff_tolerance_h),
            per_side_threshold=settings.per_side_threshold,
            acceptance_threshold=settings.acceptance_threshold,
            aliases=settings.team_aliases,
        )

    def normalize(self, name: str) -> str:
        return self._normalize(name)

    def score(self, prediction: PredictionRecord, fixture: Fixture) -> Optional[MatchCandidate]:
        """Score one pairing; None when outside the kickoff window or below the per-side threshold."""
        delta_s: Optional[float] = None
        if prediction.expected_kickoff is not None:
            delta = abs(_as_utc(fixture.kickoff) - _as_utc(prediction.expected_kickoff))
            if delta > self.kickoff_tolerance:
                return None
            delta_s = delta.total_seconds()

        home = name_similarity(self.normalize(prediction.home_team), self.normalize(fixture.home_team))
        if home < self.per_side_threshold:
            return None
        away = name_similarity(self.normalize(prediction.away_team), self.normalize(fixture.away_team))
        if away < self.per_side_threshold:
            return None

        return MatchCandidate(
            prediction_id=prediction.id,
            fixture=fixture,
            home_similarity=home,
            away_similarity=away,
            score=(home + away) / 2.0,
            kickoff_delta_s=delta_s,
        )

    def rank(self, prediction: PredictionRecord, candidates: Iterable[Fixture]) -> list[MatchCandidate]:
        """All acceptable candidates, best first."""
        scored = [
            c
            for c in (self.score(prediction, f) for f in candidates)
            if c is not None and c.score >= self.acceptance_threshold
        ]
        scored.sort(
            key=lambda c: (
                -round(c.score, 6),
                c.kickoff_delta_s if c.kickoff_delta_s is not None else math.inf,
                c.fixture.fixture_id,
            )
        )
        return scored

    def match(self, prediction: PredictionRecord, candidates: Iterable[Fixture]) -> Optional[MatchCandidate]:
        ranked = self.rank(prediction, candidates)
        if not ranked:
            MATCH_ATTEMPTS.labels(result="no_match").inc()
            logger.debug(
                "fixture_no_match",
                prediction_id=prediction.id,
                home=prediction.home_team,
                away=prediction.away_team,
            )
            return None

        best = ranked[0]
        MATCH_ATTEMPTS.labels(result="matched").inc()
        logger.info(
            "fixture_matched",
            prediction_id=prediction.id,
            fixture_id=best.fixture.fixture_id,
            home=best.fixture.home_team,
            away=best.fixture.away_team,
            score=round(best.score, 3),
            runner_up=round(ranked[1].score, 3) if len(ranked) > 1 else None,
        )
        return best

    def require_match(self, prediction: PredictionRecord, candidates: Iterable[Fixture]) -> MatchCandidate:
        """Like match(), but raises NoMatch instead of returning None."""
        best = self.match(prediction, candidates)
        if best is None:
            raise NoMatch(prediction.id)
        return best
