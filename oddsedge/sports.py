"""
Sport taxonomy and free-text sport detection.

Every caller-supplied sport string ("soccer_epl", "NBA", "ice hockey", ...)
is resolved through an explicit alias table. Nothing is inferred from
arbitrary substrings: a tag either matches a known alias, bigram or
provider prefix, or it falls back to the most general model (soccer).
"""

import logging
import re
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class Sport(str, Enum):
    """Sports with a dedicated prediction model."""

    SOCCER = "soccer"
    BASKETBALL = "basketball"
    AMERICAN_FOOTBALL = "american_football"
    HOCKEY = "hockey"


# Most general model, used when a tag cannot be resolved
FALLBACK_SPORT = Sport.SOCCER

# Single-token aliases (after normalization to lowercase, "_"-separated)
SPORT_ALIASES = {
    # Soccer
    "soccer": Sport.SOCCER,
    "football": Sport.SOCCER,
    "futbol": Sport.SOCCER,
    "futebol": Sport.SOCCER,
    "epl": Sport.SOCCER,
    "mls": Sport.SOCCER,
    "uefa": Sport.SOCCER,
    "fifa": Sport.SOCCER,
    # Basketball
    "basketball": Sport.BASKETBALL,
    "nba": Sport.BASKETBALL,
    "wnba": Sport.BASKETBALL,
    "ncaab": Sport.BASKETBALL,
    "euroleague": Sport.BASKETBALL,
    # American football
    "americanfootball": Sport.AMERICAN_FOOTBALL,
    "nfl": Sport.AMERICAN_FOOTBALL,
    "ncaaf": Sport.AMERICAN_FOOTBALL,
    "cfl": Sport.AMERICAN_FOOTBALL,
    # Hockey
    "hockey": Sport.HOCKEY,
    "icehockey": Sport.HOCKEY,
    "nhl": Sport.HOCKEY,
    "khl": Sport.HOCKEY,
    "ahl": Sport.HOCKEY,
}

# Two-token phrases, checked before single tokens so "american football"
# never resolves through "football"
SPORT_PHRASE_ALIASES = {
    "american_football": Sport.AMERICAN_FOOTBALL,
    "college_football": Sport.AMERICAN_FOOTBALL,
    "ncaa_football": Sport.AMERICAN_FOOTBALL,
    "college_basketball": Sport.BASKETBALL,
    "ncaa_basketball": Sport.BASKETBALL,
    "ice_hockey": Sport.HOCKEY,
}

# Sports whose markets price a draw outcome (1X2)
DRAW_SPORTS = frozenset({Sport.SOCCER})

# Sport-specific ceiling on verdict conviction (1-10 scale)
SPORT_CONVICTION_CAPS = {
    Sport.HOCKEY: 5,  # Most random, goalie-driven
    Sport.SOCCER: 7,
    Sport.BASKETBALL: 7,
    Sport.AMERICAN_FOOTBALL: 9,
}
DEFAULT_CONVICTION_CAP = 7

_SEPARATORS = re.compile(r"[\s\-./]+")


def normalize_sport_tag(tag: str) -> str:
    """Lowercase a sport tag and collapse separators to underscores."""
    return _SEPARATORS.sub("_", (tag or "").strip().lower()).strip("_")


def resolve_sport(tag: Optional[str]) -> Optional[Sport]:
    """
    Resolve a sport tag through the alias table.

    Lookup order: exact alias, two-token phrase, single token. Returns
    None when nothing matches (callers decide on the fallback).
    """
    if isinstance(tag, Sport):
        return tag

    normalized = normalize_sport_tag(tag or "")
    if not normalized:
        return None

    if normalized in SPORT_ALIASES:
        return SPORT_ALIASES[normalized]
    if normalized in SPORT_PHRASE_ALIASES:
        return SPORT_PHRASE_ALIASES[normalized]

    tokens = normalized.split("_")
    for first, second in zip(tokens, tokens[1:]):
        phrase = f"{first}_{second}"
        if phrase in SPORT_PHRASE_ALIASES:
            return SPORT_PHRASE_ALIASES[phrase]

    for token in tokens:
        if token in SPORT_ALIASES:
            return SPORT_ALIASES[token]

    return None


def detect_sport(tag: Optional[str]) -> Sport:
    """Resolve a free-text sport tag, falling back to soccer when unknown."""
    sport = resolve_sport(tag)
    if sport is None:
        logger.info(f"[SPORT] Unknown sport tag {tag!r}, falling back to {FALLBACK_SPORT.value}")
        return FALLBACK_SPORT
    return sport


def has_draw(sport: Sport) -> bool:
    """True if the sport's market prices a draw outcome."""
    return sport in DRAW_SPORTS


def get_conviction_cap(sport: Sport) -> int:
    return SPORT_CONVICTION_CAPS.get(sport, DEFAULT_CONVICTION_CAP)
