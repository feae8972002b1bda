"""
Abstract base class for fixture data providers.
Defines the contract that every upstream connector must implement.
"""
from __future__ import annotations

import abc
from datetime import date
from typing import Optional

from shared.models.domain import Fixture, FixtureStats


class FixtureProvider(abc.ABC):
    """
    Raw upstream access, no caching.

    Implementations raise UpstreamUnavailable when the provider cannot be
    reached and UpstreamMalformed when its answer cannot be understood.
    """

    name: str = "provider"

    async def start(self) -> None:
        """Open network resources."""

    async def close(self) -> None:
        """Release network resources."""

    @abc.abstractmethod
    async def fixtures_by_date(self, day: date) -> list[Fixture]:
        ...

    @abc.abstractmethod
    async def live_fixtures(self) -> list[Fixture]:
        ...

    @abc.abstractmethod
    async def fixture_detail(self, fixture_id: int) -> Optional[Fixture]:
        """Return the fixture with statistics when available; None if unknown upstream."""

    @abc.abstractmethod
    async def fixture_statistics(
        self, fixture_id: int, home_team_id: Optional[int] = None
    ) -> Optional[FixtureStats]:
        ...
