"""Configuration system for the survey gateway."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from enum import Enum
from functools import lru_cache
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments supported by the platform."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class TelemetrySettings(BaseModel):
    """Configuration block for OpenTelemetry export."""

    enabled: bool = Field(default=False, description="Install a tracer provider on startup")
    exporter: str = Field(default="console", description="Target exporter type")
    endpoint: str | None = Field(default=None, description="Exporter endpoint")
    sample_ratio: float = Field(default=0.1, ge=0.0, le=1.0)


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    level: str = Field(default="INFO", description="Log level for application output")
    correlation_id_header: str = Field(
        default="X-Correlation-ID", description="Header used for trace correlation"
    )
    scrub_fields: Sequence[str] = Field(
        default_factory=lambda: ["password", "token", "secret", "authorization", "key_hash"],
        description="Fields that should be redacted in logs",
    )


class OAuthSettings(BaseModel):
    """Identity provider used to verify bearer tokens."""

    issuer: str = Field(default="https://idp.local/realms/surveys", description="Expected issuer")
    audience: str = Field(default="survey-gateway", description="Expected audience claim")
    jwks_url: str = Field(
        default="https://idp.local/realms/surveys/protocol/openid-connect/certs",
        description="JWKS endpoint for signature validation",
    )
    algorithms: Sequence[str] = Field(default_factory=lambda: ["RS256", "RS384", "RS512"])
    jwks_cache_ttl: int = Field(default=300, ge=0, description="Seconds to cache JWKS keys")


class RateLimitSettings(BaseModel):
    """Token bucket configuration for API rate limiting."""

    requests_per_minute: int = Field(default=60, ge=1, description="Default per-subject RPM")
    burst: int = Field(default=10, ge=1, description="Token bucket burst capacity")
    endpoint_overrides: dict[str, Annotated[int, Field(ge=1)]] = Field(
        default_factory=dict, description="Endpoint specific RPM overrides"
    )
    ip_multiplier: int = Field(
        default=4, ge=1, description="Client address budget as a multiple of one caller's"
    )


class APIKeySettings(BaseModel):
    """API key issuing and verification configuration."""

    enabled: bool = True
    prefix: str = Field(default="sgk_", min_length=1, description="Prefix marking API key tokens")
    hashing_algorithm: str = Field(default="sha256")
    secret_bytes: int = Field(default=32, ge=16, le=128)


class SecurityHeaderSettings(BaseModel):
    """HTTP security header configuration."""

    hsts_max_age: int = Field(default=63072000, description="HSTS max-age in seconds")
    content_security_policy: str = Field(
        default="default-src 'self'",
        description="CSP applied to responses",
    )
    frame_options: str = Field(default="DENY")


class SecuritySettings(BaseModel):
    """Aggregate security configuration."""

    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    api_keys: APIKeySettings = Field(default_factory=APIKeySettings)
    headers: SecurityHeaderSettings = Field(default_factory=SecurityHeaderSettings)
    role_grants: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Additional permissions granted to a role (and every role above it)",
    )
    enforce_https: bool = False


class LoaderSettings(BaseModel):
    """Batch sizing for request scoped loaders."""

    max_batch_size: int = Field(default=100, ge=1, le=1000)
    overrides: dict[str, int] = Field(
        default_factory=lambda: {
            "surveys": 50,
            "sessions": 50,
            "responses": 50,
            "survey_stats": 20,
        },
        description="Per-loader batch size overrides keyed by loader name",
    )

    def batch_size_for(self, name: str) -> int:
        """Return the batch cap applied to the named loader."""
        return max(1, int(self.overrides.get(name, self.max_batch_size)))


class PaginationSettings(BaseModel):
    """List operation paging defaults."""

    default_limit: int = Field(default=20, ge=1)
    max_limit: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def validate_limits(self) -> PaginationSettings:
        if self.default_limit > self.max_limit:
            raise ValueError("default_limit cannot exceed max_limit")
        return self


class SessionSettings(BaseModel):
    """Survey session lifecycle configuration."""

    expiry_minutes: int = Field(
        default=60, ge=1, description="Inactivity window after which a session expires"
    )


class BusSettings(BaseModel):
    """Realtime notification bus configuration."""

    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = Field(default="redis://redis:6379/0", description="Redis connection URL")
    channel_prefix: str = Field(default="survey-gateway:", description="Redis channel prefix")
    queue_size: int = Field(default=100, ge=1, description="Per-subscriber buffer size")


class AppSettings(BaseSettings):
    """Top-level application settings."""

    environment: Environment = Environment.DEV
    debug: bool = False
    service_name: str = "survey-gateway"
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    loaders: LoaderSettings = Field(default_factory=LoaderSettings)
    pagination: PaginationSettings = Field(default_factory=PaginationSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    bus: BusSettings = Field(default_factory=BusSettings)

    model_config = SettingsConfigDict(env_prefix="SURVEY_", env_nested_delimiter="__")


ENVIRONMENT_DEFAULTS: Mapping[Environment, dict[str, Any]] = {
    Environment.DEV: {
        "debug": True,
        "telemetry": {"exporter": "console"},
        "security": {"enforce_https": False},
    },
    Environment.STAGING: {
        "telemetry": {"enabled": True, "exporter": "otlp", "sample_ratio": 0.25},
        "bus": {"backend": "redis"},
    },
    Environment.PROD: {
        "telemetry": {"enabled": True, "exporter": "otlp", "sample_ratio": 0.05},
        "security": {"enforce_https": True},
        "bus": {"backend": "redis"},
    },
}


def _deep_update(target: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            target[key] = _deep_update(dict(current), value)
        else:
            target[key] = value
    return target


def load_settings(environment: str | None = None) -> AppSettings:
    """Load application settings with environment specific defaults applied."""
    env_value = (environment or os.getenv("SURVEY_ENV", "dev")).lower()
    env = Environment(env_value)
    defaults = ENVIRONMENT_DEFAULTS.get(env, {})
    try:
        base_settings = AppSettings()
    except ValidationError as err:
        raise RuntimeError(f"Invalid configuration: {err}") from err
    merged = base_settings.model_dump()
    merged = _deep_update(merged, defaults)
    merged["environment"] = env
    return AppSettings.model_validate(merged)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Cached accessor used by production code."""
    return load_settings()


__all__ = [
    "APIKeySettings",
    "AppSettings",
    "BusSettings",
    "ENVIRONMENT_DEFAULTS",
    "Environment",
    "LoaderSettings",
    "LoggingSettings",
    "OAuthSettings",
    "PaginationSettings",
    "RateLimitSettings",
    "SecurityHeaderSettings",
    "SecuritySettings",
    "SessionSettings",
    "TelemetrySettings",
    "get_settings",
    "load_settings",
]
