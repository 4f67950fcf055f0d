"""
Configuration layer for the pageview tracking gateway.

Settings are loaded from environment variables to support Twelve-Factor App
deployments. They are raw strings here; the tracking identifier and cookie
name are validated once, when the application is provisioned.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple


def _split_paths(raw: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.
    """

    service_name: str = os.getenv("SERVICE_NAME", "pageview-gateway")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    # Analytics property and identity cookie
    tracking_id: str = os.getenv("TRACKING_ID", "")
    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "")

    # Collector endpoint (Measurement Protocol)
    collector_url: str = os.getenv("COLLECTOR_URL", "http://www.google-analytics.com/collect")
    collector_timeout_seconds: float = float(os.getenv("COLLECTOR_TIMEOUT_SECONDS", "1"))
    dispatch_max_pending: int = int(os.getenv("DISPATCH_MAX_PENDING", "1000"))

    # Optional site proxied behind the gateway
    upstream_base_url: str = os.getenv("UPSTREAM_BASE_URL", "")
    upstream_timeout_seconds: float = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))

    untracked_paths: Tuple[str, ...] = field(
        default_factory=lambda: _split_paths(os.getenv("UNTRACKED_PATHS", "/health"))
    )


settings = Settings()
