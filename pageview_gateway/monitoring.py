"""
Observability helpers:
- Logging setup for the gateway process
- Health status built from the background dispatcher counters
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from pageview_gateway.dispatch import BackgroundDispatcher

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@dataclass(frozen=True)
class HealthStatus:
    """
    Health status response structure.
    """

    ok: bool
    details: Dict[str, Any]


def configure_logging(level: str = "INFO") -> None:
    """
    Send gateway logs to stderr with a single handler.
    """
    logger = logging.getLogger("pageview_gateway")
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


def build_health_status(dispatcher: BackgroundDispatcher) -> HealthStatus:
    """
    The gateway stays healthy even when the collector is failing; delivery
    problems only show up in the counters.
    """
    return HealthStatus(
        ok=True,
        details={
            "dispatch": {
                "in_flight": dispatcher.in_flight,
                "submitted": dispatcher.submitted,
                "completed": dispatcher.completed,
                "failed": dispatcher.failed,
                "dropped": dispatcher.dropped,
            }
        },
    )
