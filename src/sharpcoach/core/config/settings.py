"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """SharpCoach server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; there is no auth layer in front of the tools.
    sharpcoach_host: str = "127.0.0.1"
    sharpcoach_port: int = 8011
    sharpcoach_log_level: str = "info"
    sharpcoach_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.sharpcoach/coaching.db"
    encryption_key: str = ""
    history_backend: Literal["memory", "sqlite"] = "sqlite"

    # Pattern detection
    pattern_window_days: int = 14
    pattern_analysis_timeout: float = 5.0

    # Interventions
    intervention_threshold: float = 60.0

    # Personalization refresh gate
    profile_refresh_days: int = 7
    profile_confidence_floor: float = 70.0


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
