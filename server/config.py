"""Configuration for the decklearn API server."""

import os
from dataclasses import dataclass
from typing import Optional

from study.scheduler import MIN_EASE


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class Settings:
    """
    Database location and study-engine tuning.

    Every field is overridable at construction for testing; fields left as
    None pick up their environment variable or built-in default.
    """
    database_url: Optional[str] = None
    session_secret: Optional[str] = None
    session_ttl_hours: int = 24 * 7

    # Study sessions
    study_session_default_limit: Optional[int] = None
    study_session_max_limit: Optional[int] = None

    # Ease factor given to freshly initialized records. The SM-2 formula
    # itself falls back to 2.5 only when a record has no ease at all.
    initial_difficulty: Optional[float] = None

    # Statistics
    streak_max_days: Optional[int] = None
    stats_workers: Optional[int] = None

    # Reject a review whose record changed since it was read (HTTP 409)
    # instead of letting the last write win.
    optimistic_reviews: Optional[bool] = None

    def __post_init__(self):
        if self.database_url is None:
            self.database_url = os.environ.get("DATABASE_URL", "sqlite:///./decklearn.db")
        if self.session_secret is None:
            self.session_secret = os.environ.get("SESSION_SECRET", "dev-secret-change-in-production")

        if self.study_session_default_limit is None:
            self.study_session_default_limit = _env_int("STUDY_SESSION_DEFAULT_LIMIT", 20)
        if self.study_session_max_limit is None:
            self.study_session_max_limit = _env_int("STUDY_SESSION_MAX_LIMIT", 50)
        if self.initial_difficulty is None:
            self.initial_difficulty = _env_float("STUDY_INITIAL_DIFFICULTY", 5.0)
        # Below the SM-2 ease floor; keep the default.
        if self.initial_difficulty < MIN_EASE:
            self.initial_difficulty = 5.0
        if self.streak_max_days is None:
            self.streak_max_days = _env_int("STUDY_STREAK_MAX_DAYS", 365)
        if self.stats_workers is None:
            self.stats_workers = _env_int("STUDY_STATS_WORKERS", 4)
        if self.optimistic_reviews is None:
            self.optimistic_reviews = os.environ.get(
                "STUDY_OPTIMISTIC_REVIEWS", "",
            ).lower() in ("1", "true", "yes")
