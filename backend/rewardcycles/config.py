"""Application configuration."""
from functools import lru_cache
import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Reward Cycles"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./data/rewardcycles.db"
    storage_retry_attempts: int = 3
    storage_retry_max_wait_seconds: float = 8.0

    # Scheduler
    scheduler_enabled: bool = True
    cycle_evaluation_interval_minutes: int = 60

    # Cycle rules
    min_cycle_duration_days: int = 7

    # Comma-separated allowed origins, or "*" to allow all.
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("cycle_evaluation_interval_minutes")
    @classmethod
    def validate_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("CYCLE_EVALUATION_INTERVAL_MINUTES must be greater than zero.")
        return value

    @field_validator("min_cycle_duration_days", "storage_retry_attempts")
    @classmethod
    def validate_at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Value must be at least 1.")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Reject level names the logging module does not know."""
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"LOG_LEVEL {value!r} is not a valid logging level.")
        return level

    @property
    def cors_origins_list(self) -> list[str]:
        if self.cors_origins.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
