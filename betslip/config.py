"""
Configuration management.
"""

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars
    )

    # Collaborator API
    api_base_url: str = "http://localhost:8080/api"
    stream_url: str = "ws://localhost:8080/api/cuotas-dinamicas/stream"
    api_token: str = ""
    api_rate_limit: int = Field(default=10, ge=1)  # requests per second
    api_max_retries: int = Field(default=3, ge=1)
    api_timeout: float = 30.0

    # Odds feed
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    feed_stale_seconds: int = 60
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    reconnect_max_attempts: int = 5

    # Reconciliation
    odds_drift_tolerance: Decimal = Decimal("0.01")

    # Cart limits
    min_stake: Decimal = Decimal("0")  # exclusive: stake must be greater
    max_stake: Decimal = Decimal("10000")
    min_odds: Decimal = Decimal("1.01")
    max_odds: Decimal = Decimal("50.0")
    max_lines: int = 10

    # Events attached at start-up (comma-separated ids)
    watch_events: str = ""

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/betslip.log"
    log_json: bool = False

    # Health check
    health_host: str = "0.0.0.0"
    health_port: int = 8081


settings = Settings()
