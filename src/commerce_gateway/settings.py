"""
commerce_gateway.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (cookie and JWT secrets).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """
    Read once at process startup; treated as immutable afterwards.
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Environment controls toggle behavior like dev token minting.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "commerce-gateway"
    log_level: str = "INFO"

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)

    # Cookies / auth
    cookie_secret: str = Field(default="dev-cookie-secret-change-me-0123456789", repr=False)
    jwt_alg: str = "HS256"
    jwt_issuer: str = "commerce-gateway"
    jwt_audience: str = "commerce-api"
    jwt_secret: str = Field(default="dev-jwt-secret-change-me-0123456789abc", repr=False)

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./commerce.db"

    # HTTP pipeline
    cors_origins: str = "*"
    max_body_bytes: int = Field(default=100 * 1024, ge=1024)
    # Uploads (multipart/form-data) are buffered under their own, larger limit.
    max_multipart_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    compression_min_size: int = Field(default=1024, ge=0)

    # Rate limiting is opt-in per route group.
    rate_limit_requests: int = Field(default=100, ge=1)
    rate_limit_window: int = Field(default=15 * 60, ge=1)  # seconds
    rate_limited_groups: list[str] = Field(default_factory=lambda: ["product", "review"])

    # Group name -> roles allowed through the group-level gate.
    route_roles: dict[str, list[str]] = Field(default_factory=dict)

    # Upper bound on the graceful drain after SIGTERM.
    shutdown_timeout: int | None = 30

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _LOG_LEVELS:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {sorted(_LOG_LEVELS)}")
        return upper

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Env var names are unprefixed (PORT, COOKIE_SECRET, DATABASE_URL, ...) to match
# the platform's deployment manifests.
