"""
Market parser.

Turns a prediction's market type tag and free text into one predicate of a
closed set. Source texts mix Turkish and English shorthand ("IY 0.5 ÜST",
"KG VAR", "MS 1", "Over 2.5 Goals"), so keywords are matched after
upper-casing and diacritic stripping. Anything that cannot be read
unambiguously raises ParseFailure; nothing is guessed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

from ingest.normalization.team_names import strip_diacritics
from shared.errors import ParseFailure
from shared.models.enums import Direction, Period, Side, StatKind
from shared.utils.logging import get_logger

logger = get_logger(__name__)


# ── Predicates ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TotalGoals:
    period: Period
    direction: Direction
    threshold: float
    team: Optional[Side] = None  # None: both teams

    def __str__(self) -> str:
        who = f" {self.team.value}" if self.team else ""
        return f"{self.period.value}{who} goals {self.direction.value} {self.threshold:g}"


@dataclass(frozen=True)
class MatchWinner:
    period: Period
    side: Side

    def __str__(self) -> str:
        return f"{self.period.value} result {self.side.value}"


@dataclass(frozen=True)
class BothTeamsToScore:
    period: Period
    expected: bool

    def __str__(self) -> str:
        return f"{self.period.value} both teams to score {'yes' if self.expected else 'no'}"


@dataclass(frozen=True)
class StatTotal:
    stat: StatKind
    direction: Direction
    threshold: float

    def __str__(self) -> str:
        return f"{self.stat.value} {self.direction.value} {self.threshold:g}"


@dataclass(frozen=True)
class Unsupported:
    reason: str

    def __str__(self) -> str:
        return f"unsupported: {self.reason}"


Predicate = Union[TotalGoals, MatchWinner, BothTeamsToScore, StatTotal, Unsupported]


# ── Keyword sets ────────────────────────────────────────────────────────

FIRST_HALF = ("IY", "HT", "1H", "1ST HALF", "FIRST HALF", "HALF TIME", "HALFTIME", "ILK YARI", "1 YARI")
FULL_TIME = ("MS", "FT", "FULL TIME", "FULLTIME", "MAC SONU", "MATCH")
OVER = ("OVER", "UST", "O")
UNDER = ("UNDER", "ALT", "U")
BTTS = ("KG", "BTTS", "GG", "NG", "BOTH TEAMS TO SCORE", "BOTH TEAMS SCORE", "BOTH TEAMS")
BTTS_NO = ("KG YOK", "NG", "NO GOAL", "BTTS NO", "NO")
CORNERS = ("CORNER", "CORNERS", "KORNER")
CARDS = ("CARD", "CARDS", "KART", "BOOKINGS")
HOME_TEAM = ("HOME", "HOME TEAM", "EV SAHIBI", "EV")
AWAY_TEAM = ("AWAY", "AWAY TEAM", "DEPLASMAN", "DEP")

WINNER_SIDES: dict[str, Side] = {
    "1": Side.HOME,
    "HOME": Side.HOME,
    "EV SAHIBI": Side.HOME,
    "0": Side.DRAW,
    "X": Side.DRAW,
    "DRAW": Side.DRAW,
    "BERABERLIK": Side.DRAW,
    "BERABERE": Side.DRAW,
    "2": Side.AWAY,
    "AWAY": Side.AWAY,
    "DEPLASMAN": Side.AWAY,
}

FILLER = frozenset({
    "WIN", "WINS", "WINNER", "RESULT", "TO", "THE", "BET", "TIP", "PICK",
    "GOAL", "GOALS", "GOL", "TOTAL", "KAZANIR", "SONUCU", "YES", "VAR",
})

# Tags that name a market kind rather than carry market text
TAG_KINDS: dict[str, str] = {
    "OVER UNDER": "totals",
    "OU": "totals",
    "TOTALS": "totals",
    "TOTAL GOALS": "totals",
    "GOALS": "totals",
    "1X2": "winner",
    "MATCH WINNER": "winner",
    "MATCH RESULT": "winner",
    "WINNER": "winner",
    "BTTS": "btts",
    "BOTH TEAMS TO SCORE": "btts",
    "CORNERS": "corners",
    "CARDS": "cards",
}

_NUMBER = re.compile(r"\b\d+(?:\.\d+)?\b")
_COMPACT_DIRECTION = re.compile(r"\b([OU])(\d)")
_DECIMAL_COMMA = re.compile(r"(\d),(\d)")
_NOISE = re.compile(r"[^A-Z0-9. ]+")


def _prepare(text: str) -> str:
    s = strip_diacritics(text).upper()
    s = _DECIMAL_COMMA.sub(r"\1.\2", s)
    s = _NOISE.sub(" ", s)
    s = _COMPACT_DIRECTION.sub(r"\1 \2", s)
    # Sentence dots: keep only dots between digits
    s = re.sub(r"(?<!\d)\.|\.(?!\d)", " ", s)
    return f" {' '.join(s.split())} "


def _has(padded: str, phrases: tuple[str, ...]) -> bool:
    return any(f" {p} " in padded for p in phrases)


def _remove(padded: str, phrases: tuple[str, ...]) -> str:
    for p in sorted(phrases, key=len, reverse=True):
        while f" {p} " in padded:
            padded = padded.replace(f" {p} ", " ")
    return padded


def _single_threshold(padded: str, tag: str, text: str) -> float:
    numbers = _NUMBER.findall(padded)
    if not numbers:
        raise ParseFailure(tag, text, "no threshold")
    if len(set(numbers)) > 1:
        raise ParseFailure(tag, text, f"ambiguous threshold {numbers}")
    return float(numbers[0])


def _unrecognised(body: str, *known: tuple[str, ...]) -> list[str]:
    for phrases in known:
        body = _remove(body, phrases)
    return [t for t in body.split() if t not in FILLER and not _NUMBER.fullmatch(t)]


def _direction(padded: str, tag: str, text: str) -> Optional[Direction]:
    over, under = _has(padded, OVER), _has(padded, UNDER)
    if over and under:
        raise ParseFailure(tag, text, "both over and under")
    if over:
        return Direction.OVER
    if under:
        return Direction.UNDER
    return None


def parse(tag: str, text: str) -> Predicate:
    """
    Parse a market into a predicate.

    Raises:
        ParseFailure: the market is unknown, combined or ambiguous.
    """
    tag = tag or ""
    text = text or ""
    tag_key = " ".join(_prepare(tag.replace("_", " ").replace("-", " ")).split())
    hint = TAG_KINDS.get(tag_key)
    padded = _prepare(text if hint else f"{tag} {text}")
    if not padded.strip():
        raise ParseFailure(tag, text, "empty market")

    first_half = _has(padded, FIRST_HALF)
    full_time = _has(padded, FULL_TIME)
    if first_half and full_time:
        raise ParseFailure(tag, text, "half-time/full-time markets are not supported")
    period = Period.FIRST_HALF if first_half else Period.FULL_TIME
    body = _remove(_remove(padded, FIRST_HALF), FULL_TIME)

    stat: Optional[StatKind] = None
    if hint == "corners" or _has(body, CORNERS):
        stat = StatKind.CORNERS
    elif hint == "cards" or _has(body, CARDS):
        stat = StatKind.CARDS

    direction = _direction(body, tag, text)

    if stat is not None:
        if period != Period.FULL_TIME:
            raise ParseFailure(tag, text, "first-half statistics are not supported")
        if _has(body, HOME_TEAM) or _has(body, AWAY_TEAM):
            raise ParseFailure(tag, text, f"team {stat.value} markets are not supported")
        if direction is None:
            raise ParseFailure(tag, text, f"{stat.value} market without over/under")
        leftover = _unrecognised(body, CORNERS, CARDS, OVER, UNDER)
        if leftover:
            raise ParseFailure(tag, text, f"unrecognised words {leftover}")
        return StatTotal(stat, direction, _single_threshold(body, tag, text))

    if hint == "btts" or _has(body, BTTS):
        leftover = [t for t in _remove(body, BTTS + BTTS_NO).split() if t not in FILLER]
        if direction is not None or leftover:
            raise ParseFailure(tag, text, "combined markets are not supported")
        return BothTeamsToScore(period, expected=not _has(body, BTTS_NO))

    if direction is not None or hint == "totals":
        if direction is None:
            raise ParseFailure(tag, text, "totals market without over/under")
        body = _remove(body, OVER + UNDER)
        team: Optional[Side] = None
        if _has(body, HOME_TEAM):
            team = Side.HOME
        if _has(body, AWAY_TEAM):
            if team is not None:
                raise ParseFailure(tag, text, "team total names both teams")
            team = Side.AWAY
        leftover = _unrecognised(body, HOME_TEAM, AWAY_TEAM)
        if leftover:
            raise ParseFailure(tag, text, f"unrecognised words {leftover}")
        return TotalGoals(period, direction, _single_threshold(body, tag, text), team)

    remainder = " ".join(t for t in body.split() if t not in FILLER)
    side = WINNER_SIDES.get(remainder)
    if side is not None:
        return MatchWinner(period, side)

    raise ParseFailure(tag, text, "unrecognised market")


def parse_or_unsupported(tag: str, text: str) -> Predicate:
    """parse(), with failures turned into an Unsupported predicate."""
    try:
        return parse(tag, text)
    except ParseFailure as exc:
        logger.info("market_unparsable", tag=tag, text=text, reason=exc.reason)
        return Unsupported(exc.reason)
