"""Configuration surface for rain-issuing."""
from __future__ import annotations

from datetime import time
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Rain deployment environment. Each has its own base URL and session key."""

    DEV = "dev"
    PRODUCTION = "production"

    @property
    def base_url(self) -> str:
        return DEFAULT_BASE_URLS[self]


DEFAULT_BASE_URLS = {
    Environment.DEV: "https://api-dev.raincards.xyz/v1",
    Environment.PRODUCTION: "https://api.raincards.xyz/v1",
}


class RainSettings(BaseSettings):
    """Main rain-issuing configuration."""

    # Environment
    environment: Environment = Environment.DEV

    # API
    api_key: str = ""
    base_url: Optional[str] = None
    timeout_seconds: float = 30.0
    user_agent: str = "rain-issuing-python/0.1.0"
    enable_logging: bool = False

    # Shipping window
    business_timezone: str = "America/New_York"
    shipment_cutoff: time = time(12, 0)

    # Secure session public keys (PEM)
    dev_public_key_pem: str = ""
    production_public_key_pem: str = ""
    session_ttl_seconds: Optional[int] = None

    class Config:
        env_prefix = "RAIN_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v):
        """Accept common spellings such as ``prod`` or ``DEV``."""
        if isinstance(v, str):
            normalized = v.strip().lower()
            if normalized in ("prod", "live"):
                return Environment.PRODUCTION
            if normalized in ("development", "sandbox"):
                return Environment.DEV
            return normalized
        return v

    @field_validator("business_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_seconds must be positive")
        return v

    @property
    def resolved_base_url(self) -> str:
        """Custom base URL if set, otherwise the environment's default."""
        return (self.base_url or self.environment.base_url).rstrip("/")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.business_timezone)


@lru_cache
def load_settings(env_file: str | None = None) -> RainSettings:
    """Load RainSettings once per process to keep components consistent."""
    env_path = Path(env_file) if env_file else None
    return RainSettings(_env_file=env_path)
