"""
Provisioning-time validation of the tracking configuration.

- Tracking identifier must follow the analytics property grammar (UA-XXXX-Y)
- Session cookie name must be usable in a Set-Cookie header
"""

from __future__ import annotations

import re

# Tracking IDs / web property IDs must match this, anchored both ends.
_TRACKING_ID_RE = re.compile(r"UA-\d{4,10}-\d{1,4}")
# Session cookie names must NOT contain any of these.
_SESSION_COOKIE_NAME_RE = re.compile(r"[\s;,=]")


class GatewayError(Exception):
    """
    Base class for errors raised by the gateway.
    """


class ConfigurationError(GatewayError, ValueError):
    """
    Raised at provisioning time when the tracking configuration is invalid.
    """


class IdentityGenerationError(GatewayError):
    """
    Raised when a new client identifier cannot be generated.
    """


def validate_tracking_id(value: str) -> str:
    if not isinstance(value, str) or _TRACKING_ID_RE.fullmatch(value) is None:
        raise ConfigurationError(f"not a valid tracking ID (UA-XXXX-Y): {value}")
    return value


def validate_session_cookie_name(value: str) -> str:
    if not isinstance(value, str) or _SESSION_COOKIE_NAME_RE.search(value):
        raise ConfigurationError(f"not a valid session cookie name: {value}")
    return value
