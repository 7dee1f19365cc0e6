"""
Application Configuration

This module provides type-safe configuration loading using Pydantic settings.
Environment variables are loaded from .env file and validated.

Usage:
    from lesson_engine.config import settings

    # Access settings
    passing = settings.SRS_PASSING_THRESHOLD
    lesson_ttl = settings.CACHE_LESSON_TTL_SECONDS
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Lesson Engine"
    DEBUG: bool = False

    # Redis (optional cache backend)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Spaced repetition - performance bands (0-100 scale)
    SRS_PASSING_THRESHOLD: float = 60.0
    SRS_GOOD_THRESHOLD: float = 80.0
    SRS_EXCELLENT_THRESHOLD: float = 90.0

    # Spaced repetition - ease factor bounds and adjustment
    SRS_MIN_EASE_FACTOR: float = 1.3
    SRS_MAX_EASE_FACTOR: float = 5.0
    SRS_DEFAULT_EASE_FACTOR: float = 2.5
    SRS_EASE_FACTOR_STEP: float = 0.1
    SRS_INTERVAL_MODIFIER: float = 1.0
    SRS_INITIAL_INTERVAL_DAYS: int = 1
    SRS_FAIR_INTERVAL_MULTIPLIER: float = 0.7

    # Scores at or above this value extend the success streak
    SRS_STREAK_THRESHOLD: float = 70.0

    # Exercise generation limits
    EXERCISE_MIN_COUNT: int = 1
    EXERCISE_MAX_COUNT: int = 20
    EXERCISE_DEFAULT_COUNT: int = 5
    EXERCISE_OPTION_COUNT: int = 4
    EXERCISE_MAX_GENERATORS: int = 20

    # Fuzzy answer matching: similarity strictly above this is accepted
    ANSWER_SIMILARITY_THRESHOLD: float = 0.8

    # Caching (seconds)
    CACHE_LESSON_TTL_SECONDS: int = 300
    CACHE_LESSON_LIST_TTL_SECONDS: int = 60
    CACHE_MAX_SIZE: int = 1000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


@lru_cache()
def load_yaml_config() -> dict[str, Any]:
    """Load optional overrides from config/default.yaml at the project root."""
    config_path = Path(__file__).parent.parent.parent / "config" / "default.yaml"

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


yaml_config: dict[str, Any] = load_yaml_config()
