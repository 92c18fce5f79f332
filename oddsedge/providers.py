"""
Collaborator contracts for the async edge of the pipeline.

Team-name resolution and third-party API calls live behind these
protocols. analyze_fixture only depends on the shapes below.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol

from oddsedge.domain import BookmakerQuote, FixtureInfo, HeadToHead, TeamRecord
from oddsedge.ml.situational import SituationalFactors


@dataclass(frozen=True)
class TeamSnapshot:
    """Season record plus recent form (oldest to newest) for one side."""

    record: TeamRecord = field(default_factory=TeamRecord)
    form: str = ""


class StatsProvider(Protocol):
    async def fetch_team(self, fixture: FixtureInfo, side: str) -> TeamSnapshot:
        """Stats for the fixture's home or away side (side is 'home' or 'away')."""
        ...


class OddsProvider(Protocol):
    async def fetch_odds(self, fixture: FixtureInfo) -> list[BookmakerQuote]:
        ...


class HeadToHeadProvider(Protocol):
    async def fetch_h2h(self, fixture: FixtureInfo) -> Optional[HeadToHead]:
        ...


class SituationalProvider(Protocol):
    async def fetch_factors(self, fixture: FixtureInfo) -> Optional[SituationalFactors]:
        ...
