"""
Unit tests for the market parser.

Run: pytest backend/tests/test_markets.py -v
"""
from __future__ import annotations

import pytest

from settlement.markets import (
    BothTeamsToScore,
    MatchWinner,
    StatTotal,
    TotalGoals,
    Unsupported,
    parse,
    parse_or_unsupported,
)
from shared.errors import ParseFailure
from shared.models.enums import Direction, Period, Side, StatKind


# ── Totals ──────────────────────────────────────────────────────────────

class TestTotalGoals:
    def test_english_over(self) -> None:
        assert parse("", "Over 2.5 Goals") == TotalGoals(Period.FULL_TIME, Direction.OVER, 2.5)

    def test_turkish_first_half_over(self) -> None:
        assert parse("", "IY 0.5 ÜST") == TotalGoals(Period.FIRST_HALF, Direction.OVER, 0.5)

    def test_turkish_full_time_under(self) -> None:
        assert parse("", "MS 3.5 ALT") == TotalGoals(Period.FULL_TIME, Direction.UNDER, 3.5)

    def test_decimal_comma(self) -> None:
        assert parse("", "Over 2,5") == TotalGoals(Period.FULL_TIME, Direction.OVER, 2.5)

    def test_compact_form(self) -> None:
        assert parse("", "O2.5") == TotalGoals(Period.FULL_TIME, Direction.OVER, 2.5)
        assert parse("", "U1.5") == TotalGoals(Period.FULL_TIME, Direction.UNDER, 1.5)

    def test_team_total(self) -> None:
        assert parse("", "Home Over 1.5") == TotalGoals(Period.FULL_TIME, Direction.OVER, 1.5, Side.HOME)
        assert parse("", "Away Under 0.5") == TotalGoals(Period.FULL_TIME, Direction.UNDER, 0.5, Side.AWAY)
        assert parse("", "Home Team Over 1.5 Goals") == TotalGoals(Period.FULL_TIME, Direction.OVER, 1.5, Side.HOME)

    def test_tag_names_the_kind(self) -> None:
        assert parse("over_under", "Over 2.5") == TotalGoals(Period.FULL_TIME, Direction.OVER, 2.5)

    def test_tag_and_text_combined(self) -> None:
        assert parse("IY", "Over 1.5") == TotalGoals(Period.FIRST_HALF, Direction.OVER, 1.5)

    def test_str(self) -> None:
        assert str(parse("", "Over 2.5")) == "full_time goals over 2.5"


# ── Match winner ────────────────────────────────────────────────────────

class TestMatchWinner:
    @pytest.mark.parametrize(
        "text,side",
        [("MS 1", Side.HOME), ("MS X", Side.DRAW), ("MS 0", Side.DRAW), ("MS 2", Side.AWAY)],
    )
    def test_turkish_codes(self, text: str, side: Side) -> None:
        assert parse("", text) == MatchWinner(Period.FULL_TIME, side)

    def test_first_half(self) -> None:
        assert parse("", "IY 2") == MatchWinner(Period.FIRST_HALF, Side.AWAY)

    def test_english(self) -> None:
        assert parse("", "Home to win") == MatchWinner(Period.FULL_TIME, Side.HOME)
        assert parse("", "Draw") == MatchWinner(Period.FULL_TIME, Side.DRAW)

    def test_tag_1x2(self) -> None:
        assert parse("1X2", "2") == MatchWinner(Period.FULL_TIME, Side.AWAY)


# ── Both teams to score ─────────────────────────────────────────────────

class TestBothTeamsToScore:
    def test_kg_var(self) -> None:
        assert parse("", "KG VAR") == BothTeamsToScore(Period.FULL_TIME, True)

    def test_kg_yok(self) -> None:
        assert parse("", "KG YOK") == BothTeamsToScore(Period.FULL_TIME, False)

    def test_english(self) -> None:
        assert parse("", "Both Teams To Score - Yes") == BothTeamsToScore(Period.FULL_TIME, True)
        assert parse("", "BTTS No") == BothTeamsToScore(Period.FULL_TIME, False)

    def test_first_half(self) -> None:
        assert parse("", "IY KG VAR") == BothTeamsToScore(Period.FIRST_HALF, True)


# ── Statistics ──────────────────────────────────────────────────────────

class TestStatTotal:
    def test_corners(self) -> None:
        assert parse("", "Corners Over 9.5") == StatTotal(StatKind.CORNERS, Direction.OVER, 9.5)

    def test_cards(self) -> None:
        assert parse("", "Cards Under 4.5") == StatTotal(StatKind.CARDS, Direction.UNDER, 4.5)

    def test_tag_hint(self) -> None:
        assert parse("corners", "Over 10.5") == StatTotal(StatKind.CORNERS, Direction.OVER, 10.5)

    def test_turkish(self) -> None:
        assert parse("", "Korner 8.5 Üst") == StatTotal(StatKind.CORNERS, Direction.OVER, 8.5)


# ── Failures ────────────────────────────────────────────────────────────

class TestParseFailure:
    @pytest.mark.parametrize(
        "tag,text",
        [
            ("", "Special Bet XYZ"),
            ("", ""),
            ("", "Over 2.5 & Under 3.5"),
            ("", "MS 1 & KG VAR"),
            ("", "KG VAR & Over 2.5"),
            ("", "IY/MS 1/1"),
            ("", "Over Goals"),
            ("", "Over 1.5 2.5"),
            ("", "IY Corners Over 4.5"),
            ("", "Corners 9.5"),
            ("totals", "Goals 2.5"),
            ("", "Home Away Over 1.5"),
            ("", "2nd Half Over 1.5 Goals"),
            ("", "Second Half Over 0.5"),
            ("", "Real Madrid Over 1.5 Goals"),
            ("", "Home Over 4.5 Corners"),
            ("", "Away Team Over 1.5 Cards"),
            ("corners", "Home Over 4.5"),
            ("", "Corners Over 9.5 Asian"),
        ],
    )
    def test_rejected(self, tag: str, text: str) -> None:
        with pytest.raises(ParseFailure):
            parse(tag, text)

    def test_failure_carries_reason(self) -> None:
        with pytest.raises(ParseFailure) as exc_info:
            parse("", "Special Bet XYZ")
        assert exc_info.value.reason == "unrecognised market"

    def test_unknown_words_in_totals_are_reported(self) -> None:
        with pytest.raises(ParseFailure) as exc_info:
            parse("", "2nd Half Over 1.5 Goals")
        assert "2ND" in exc_info.value.reason
        assert "HALF" in exc_info.value.reason

    def test_team_statistics_rejected(self) -> None:
        with pytest.raises(ParseFailure) as exc_info:
            parse("", "Home Over 4.5 Corners")
        assert exc_info.value.reason == "team corners markets are not supported"

    def test_parse_or_unsupported(self) -> None:
        result = parse_or_unsupported("", "Special Bet XYZ")
        assert isinstance(result, Unsupported)
        assert result.reason == "unrecognised market"

    def test_parse_or_unsupported_passes_through(self) -> None:
        assert parse_or_unsupported("", "KG VAR") == BothTeamsToScore(Period.FULL_TIME, True)
