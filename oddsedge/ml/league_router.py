"""
League router: liquidity filter and quality tiers by league name.

Tier classification (substring match on the lowercased league name):
  - TIER 1 (top flights, major continental cups, major US leagues): multiplier 1.0
  - TIER 2 (second divisions, mid-liquidity leagues): multiplier 0.9
  - TIER 3 (everything else): multiplier 0.8

The multiplier scales conviction for callers that want it; it never
touches probabilities. The low-liquidity denylist forces edge suppression.
"""

import logging

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# TIER CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════

TIER_1 = (
    "premier league",
    "la liga",
    "bundesliga",
    "serie a",
    "ligue 1",
    "champions league",
    "europa league",
    "eredivisie",
    "primeira liga",
    "super lig",
    "nba",
    "nfl",
    "nhl",
)

# Checked before TIER_1 so "2. bundesliga" does not match "bundesliga"
TIER_2 = (
    "2. bundesliga",
    "championship",
    "segunda",
    "serie b",
    "ligue 2",
    "mls",
    "a-league",
    "j-league",
    "k-league",
)

TIER_MULTIPLIERS = {1: 1.0, 2: 0.9, 3: 0.8}

# ═══════════════════════════════════════════════════════════════════════════
# LOW-LIQUIDITY DENYLIST
# ═══════════════════════════════════════════════════════════════════════════

LOW_LIQUIDITY_KEYWORDS = (
    "amateur",
    "youth",
    "reserve",
    "friendly",
    "cup_early_round",
)
WOMEN_KEYWORD = "women"


def get_league_tier(league: str) -> int:
    """Return 1, 2 or 3 for a league name (3 when unknown or empty)."""
    normalized = (league or "").lower()
    if any(name in normalized for name in TIER_2):
        return 2
    if any(name in normalized for name in TIER_1):
        return 1
    return 3


def get_league_quality_multiplier(league: str) -> float:
    return TIER_MULTIPLIERS[get_league_tier(league)]


def should_filter_league(league: str, filter_women: bool = True) -> bool:
    """
    True if the league is on the low-liquidity denylist.

    Matches both the raw lowercase name and an underscore-joined form, so
    "Cup Early Round" and "cup_early_round" are treated alike.
    """
    normalized = (league or "").lower()
    joined = "_".join(normalized.split())
    keywords = LOW_LIQUIDITY_KEYWORDS + ((WOMEN_KEYWORD,) if filter_women else ())

    for keyword in keywords:
        if keyword in normalized or keyword in joined:
            logger.debug(f"League {league!r} filtered by keyword {keyword!r}")
            return True
    return False
