"""
Pageview tracking gateway: session identity cookie plus fire-and-forget
Measurement Protocol hits for every request.
"""

from pageview_gateway.middleware import TrackingMiddleware, install_tracking
from pageview_gateway.models import TrackingConfig
from pageview_gateway.validation import ConfigurationError, IdentityGenerationError

__all__ = [
    "ConfigurationError",
    "IdentityGenerationError",
    "TrackingConfig",
    "TrackingMiddleware",
    "install_tracking",
]
