"""Configuration package exports."""

from __future__ import annotations

from .settings import (
    ENVIRONMENT_DEFAULTS,
    APIKeySettings,
    AppSettings,
    BusSettings,
    Environment,
    LoaderSettings,
    LoggingSettings,
    OAuthSettings,
    PaginationSettings,
    RateLimitSettings,
    SecuritySettings,
    SessionSettings,
    TelemetrySettings,
    get_settings,
    load_settings,
)

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
    "SecuritySettings",
    "SessionSettings",
    "TelemetrySettings",
    "get_settings",
    "load_settings",
]
