"""
API-Football (api-sports.io v3) provider connector.
Soccer fixtures by date, live fixtures, fixture detail and statistics.
Every response is wrapped in {"errors": ..., "response": [...]}.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.errors import UpstreamMalformed, UpstreamUnavailable
from shared.models.domain import Fixture, FixtureStats
from shared.models.enums import FixtureStatus
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import FixtureProvider

logger = get_logger(__name__)

PROVIDER_NAME = "api_football"

API_FOOTBALL_STATUS: dict[str, FixtureStatus] = {
    "TBD": FixtureStatus.NOT_STARTED,
    "NS": FixtureStatus.NOT_STARTED,
    "1H": FixtureStatus.IN_PROGRESS,
    "HT": FixtureStatus.IN_PROGRESS,
    "2H": FixtureStatus.IN_PROGRESS,
    "ET": FixtureStatus.IN_PROGRESS,
    "BT": FixtureStatus.IN_PROGRESS,
    "P": FixtureStatus.IN_PROGRESS,
    "SUSP": FixtureStatus.IN_PROGRESS,
    "INT": FixtureStatus.IN_PROGRESS,
    "LIVE": FixtureStatus.IN_PROGRESS,
    "FT": FixtureStatus.FINISHED,
    "AET": FixtureStatus.FINISHED,
    "PEN": FixtureStatus.FINISHED,
    "PST": FixtureStatus.POSTPONED,
    "CANC": FixtureStatus.CANCELLED,
    "ABD": FixtureStatus.CANCELLED,
    "AWD": FixtureStatus.CANCELLED,
    "WO": FixtureStatus.CANCELLED,
}

_STAT_FIELDS: dict[str, str] = {
    "Corner Kicks": "corners",
    "Yellow Cards": "yellow",
    "Red Cards": "red",
}


def map_status(code: str) -> FixtureStatus:
    """Map an API-Football short status code; unknown codes are malformed data."""
    status = API_FOOTBALL_STATUS.get((code or "").strip().upper())
    if status is None:
        raise UpstreamMalformed(PROVIDER_NAME, f"unknown fixture status {code!r}")
    return status


def _opt_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_kickoff(fixture: dict[str, Any]) -> datetime:
    ts = fixture.get("timestamp")
    if isinstance(ts, (int, float)):
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    raw = fixture.get("date")
    if not isinstance(raw, str):
        raise UpstreamMalformed(PROVIDER_NAME, "fixture without date")
    try:
        kickoff = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise UpstreamMalformed(PROVIDER_NAME, f"bad fixture date {raw!r}") from exc
    if kickoff.tzinfo is None:
        kickoff = kickoff.replace(tzinfo=timezone.utc)
    return kickoff.astimezone(timezone.utc)


def parse_statistics(
    entries: list[dict[str, Any]], home_team_id: Optional[int] = None
) -> Optional[FixtureStats]:
    """
    Build FixtureStats from the per-team statistics blocks.

    Blocks are matched to sides by team id when known, else by order
    (home first, as the provider returns them). A statistic present with a
    null value counts as zero; a missing statistic stays None.
    """
    if len(entries) < 2:
        return None

    if home_team_id is not None:
        home = next((e for e in entries if (e.get("team") or {}).get("id") == home_team_id), None)
        away = next((e for e in entries if (e.get("team") or {}).get("id") != home_team_id), None)
        if home is None or away is None:
            home, away = entries[0], entries[1]
    else:
        home, away = entries[0], entries[1]

    values: dict[str, Optional[int]] = {}
    for side, block in (("home", home), ("away", away)):
        stats = block.get("statistics")
        if not isinstance(stats, list):
            raise UpstreamMalformed(PROVIDER_NAME, "statistics block without list")
        for stat in stats:
            field = _STAT_FIELDS.get(stat.get("type", ""))
            if field:
                values[f"{field}_{side}"] = _opt_int(stat.get("value")) or 0
    return FixtureStats(**values)


def parse_fixture(item: dict[str, Any]) -> Fixture:
    """Normalize one API-Football fixture object; raises UpstreamMalformed on bad shape."""
    try:
        fixture = item["fixture"]
        teams = item["teams"]
        fixture_id = int(fixture["id"])
        home_team = teams["home"]["name"]
        away_team = teams["away"]["name"]
    except (KeyError, TypeError, ValueError) as exc:
        raise UpstreamMalformed(PROVIDER_NAME, f"fixture missing {exc}") from exc

    status_block = fixture.get("status") or {}
    code = status_block.get("short", "")
    kickoff = _parse_kickoff(fixture)
    goals = item.get("goals") or {}
    score = item.get("score") or {}
    fulltime = score.get("fulltime") or {}
    halftime = score.get("halftime") or {}

    # Regulation-time score when the provider reports it (AET/PEN add extra time to goals)
    home_goals = _opt_int(fulltime.get("home"))
    away_goals = _opt_int(fulltime.get("away"))
    if home_goals is None or away_goals is None:
        home_goals = _opt_int(goals.get("home"))
        away_goals = _opt_int(goals.get("away"))

    home_team_id = _opt_int(teams["home"].get("id"))
    stats_entries = item.get("statistics")
    stats = (
        parse_statistics(stats_entries, home_team_id)
        if isinstance(stats_entries, list) and stats_entries
        else None
    )

    return Fixture(
        fixture_id=fixture_id,
        match_date=kickoff.date(),
        home_team=home_team,
        away_team=away_team,
        kickoff=kickoff,
        status=map_status(code),
        status_code=code,
        elapsed=_opt_int(status_block.get("elapsed")),
        home_goals=home_goals,
        away_goals=away_goals,
        ht_home_goals=_opt_int(halftime.get("home")),
        ht_away_goals=_opt_int(halftime.get("away")),
        home_team_id=home_team_id,
        away_team_id=_opt_int(teams["away"].get("id")),
        league_name=(item.get("league") or {}).get("name", ""),
        stats=stats,
    )


def parse_fixture_list(items: list[dict[str, Any]]) -> list[Fixture]:
    """Parse a list, skipping individual records that fail closed."""
    fixtures: list[Fixture] = []
    for item in items:
        try:
            fixtures.append(parse_fixture(item))
        except UpstreamMalformed as exc:
            logger.warning("api_football_fixture_skipped", error=str(exc))
    return fixtures


class APIFootballProvider(FixtureProvider):
    """API-Football v3 (soccer)."""

    name = PROVIDER_NAME

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: ProviderHTTPClient | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._http = http_client or ProviderHTTPClient(
            provider_name=PROVIDER_NAME,
            base_url=settings.api_football_base_url,
            headers={"x-apisports-key": settings.api_football_key},
            timeout_s=settings.provider_request_timeout_s,
            max_retries=settings.provider_max_retries,
        )

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def _response(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        payload = await self._http.get_json(path, params=params)
        if not isinstance(payload, dict):
            raise UpstreamMalformed(PROVIDER_NAME, f"{path}: envelope is not an object")
        errors = payload.get("errors")
        if errors:
            # Quota and token problems are reported in the body with HTTP 200
            raise UpstreamUnavailable(PROVIDER_NAME, f"{path}: {errors}")
        response = payload.get("response")
        if not isinstance(response, list):
            raise UpstreamMalformed(PROVIDER_NAME, f"{path}: response is not a list")
        return response

    async def fixtures_by_date(self, day: date) -> list[Fixture]:
        items = await self._response("/fixtures", {"date": day.isoformat()})
        fixtures = parse_fixture_list(items)
        logger.debug("api_football_fixtures_by_date", date=day.isoformat(), count=len(fixtures))
        return fixtures

    async def live_fixtures(self) -> list[Fixture]:
        items = await self._response("/fixtures", {"live": "all"})
        return parse_fixture_list(items)

    async def fixture_detail(self, fixture_id: int) -> Optional[Fixture]:
        items = await self._response("/fixtures", {"id": fixture_id})
        if not items:
            return None
        return parse_fixture(items[0])

    async def fixture_statistics(
        self, fixture_id: int, home_team_id: Optional[int] = None
    ) -> Optional[FixtureStats]:
        items = await self._response("/fixtures/statistics", {"fixture": fixture_id})
        return parse_statistics(items, home_team_id)
