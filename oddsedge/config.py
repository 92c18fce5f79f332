"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings for the probability pipeline, loaded from environment variables."""

    # ═══════════════════════════════════════════════════════════════
    # Market normalization
    # ═══════════════════════════════════════════════════════════════

    VIG_REMOVAL_METHOD: str = "proportional"  # proportional | power | shin
    CONSENSUS_METHOD: str = "median"  # median | mean | trimmed
    MIN_BOOKMAKERS_FOR_CONSENSUS: int = 1

    # ═══════════════════════════════════════════════════════════════
    # Calibration
    # ═══════════════════════════════════════════════════════════════

    CALIBRATION_METHOD: str = "hybrid"  # platt | isotonic | hybrid
    CALIBRATION_HISTORY_CAPACITY: int = 1000  # Ring buffer size per sport
    CALIBRATION_MIN_SAMPLES: int = 20  # Below this, calibration quality is not reported

    # ═══════════════════════════════════════════════════════════════
    # Quality gate
    # ═══════════════════════════════════════════════════════════════

    DQ_MIN_GAMES_PLAYED: int = 5
    DQ_MIN_FORM_LENGTH: int = 3
    DQ_MIN_H2H_GAMES: int = 2
    DQ_MIN_BOOKMAKERS: int = 2

    VOLATILITY_LOW_THRESHOLD: float = 0.02
    VOLATILITY_MEDIUM_THRESHOLD: float = 0.05
    VOLATILITY_HIGH_THRESHOLD: float = 0.10

    EDGE_MIN_THRESHOLD: float = 0.02  # Below 2% = no edge
    EDGE_MEDIUM_THRESHOLD: float = 0.03
    EDGE_HIGH_THRESHOLD: float = 0.05
    EDGE_EXTREME_THRESHOLD: float = 0.20  # Above 20% = likely data issue

    SUPPRESS_ON_EXTREME_EDGE: bool = True
    SUPPRESS_ON_INSUFFICIENT_DATA: bool = True
    SUPPRESS_ON_EXTREME_VOLATILITY: bool = True
    LEAGUE_FILTER_WOMEN: bool = True

    # ═══════════════════════════════════════════════════════════════
    # Orchestrator
    # ═══════════════════════════════════════════════════════════════

    MIN_EDGE_TO_SHOW: float = 0.02
    MIN_DATA_QUALITY_FOR_EDGE: str = "LOW"  # INSUFFICIENT | LOW | MEDIUM | HIGH
    LOG_PREDICTIONS: bool = True

    # ═══════════════════════════════════════════════════════════════
    # Narrative LLM (Gemini)
    # ═══════════════════════════════════════════════════════════════

    NARRATIVE_LLM_ENABLED: bool = False
    NARRATIVE_LLM_MAX_TOKENS: int = 600
    NARRATIVE_LLM_TIMEOUT_SECONDS: int = 30
    NARRATIVE_LLM_TEMPERATURE: float = 0.3
    NARRATIVE_LLM_TOP_P: float = 0.9

    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
