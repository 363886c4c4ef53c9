# app/core/config.py

from functools import lru_cache
from typing import List, Optional
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # The environment mode: 'local' or 'prod'
    ENV: str = "local"

    # --- Production URLs (for inside Docker) ---
    DATABASE_URL_PROD: str = ""
    REDIS_URL_PROD: str = ""

    # --- Local Development URLs (for running locally) ---
    DATABASE_URL_LOCAL: str = "sqlite:///./class_access.db"
    REDIS_URL_LOCAL: str = "redis://localhost:6379/0"

    # Secrets
    JWT_SECRET: str = "change-me"
    DEVICE_FINGERPRINT_SECRET: str = "change-me-too"

    # Device admission
    DEVICE_SESSION_TTL_HOURS: int = 24
    DEVICE_SESSION_RETENTION_DAYS: int = 7
    MAX_CREDENTIAL_CAPACITY: int = 50
    ADMISSION_FAIL_OPEN: bool = True
    ADMISSION_RATE_LIMIT: str = "30/minute"
    RATE_LIMIT_ENABLED: bool = True

    # Live sessions
    LIVE_SESSION_HEADROOM_MULTIPLIER: int = 2

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    STALE_SWEEP_INTERVAL_MINUTES: int = 15
    RETENTION_CLEANUP_HOUR_UTC: int = 3

    # Email Notifications (Resend)
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM_DOMAIN: str = "resend.dev"
    SUPERVISOR_EMAIL: Optional[str] = None

    # Redis channel for device events consumed by the real-time service
    DEVICE_EVENTS_CHANNEL: str = "platform.events.devices.v1"

    # CORS - Stored as string, parsed via get_cors_origins() method
    CORS_ORIGINS: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    @field_validator("LIVE_SESSION_HEADROOM_MULTIPLIER", "DEVICE_SESSION_TTL_HOURS")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    def get_cors_origins(self) -> List[str]:
        """Parse CORS_ORIGINS from comma-separated string or JSON array"""
        if not self.CORS_ORIGINS:
            return []
        v = self.CORS_ORIGINS.strip()
        if not v:
            return []
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # --- Dynamic Properties ---
    # These return the correct URL based on the ENV
    @property
    def DATABASE_URL(self) -> str:
        return (
            self.DATABASE_URL_LOCAL if self.ENV == "local" else self.DATABASE_URL_PROD
        )

    @property
    def REDIS_URL(self) -> str:
        return self.REDIS_URL_LOCAL if self.ENV == "local" else self.REDIS_URL_PROD


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
