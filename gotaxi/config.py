"""Centralised client settings loaded from environment / .env file."""

from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Remote API
    api_base_url: str = "http://localhost:3000/api"
    api_token: Optional[str] = None
    api_timeout_seconds: float = 15.0

    # Local storage
    storage_backend: Literal["memory", "sqlite", "redis"] = "sqlite"
    sqlite_url: str = "sqlite+aiosqlite:///gotaxi_client.db"
    redis_url: str = "redis://localhost:6379/0"

    # Offline sync
    sync_interval_seconds: float = 30.0
    retry_delay_seconds: float = 1.0
    max_attempts: int = 3
    max_drain_failures: int = 10  # 0 keeps a failing operation at the head forever

    # Driver negotiation
    poll_interval_seconds: float = 3.0
    negotiation_timeout_seconds: float = 120.0

    # Estimates
    base_fare: float = 50.0  # ARS
    rate_per_km: float = 15.0  # ARS / km
    average_speed_kmh: float = 30.0
    default_distance_km: float = 5.0  # used when coordinates are missing

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
