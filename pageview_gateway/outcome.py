"""
Normalizes what the downstream handler produced into a DownstreamOutcome.

Handlers either answer with a status code, or raise an error
from which a status code and message are extracted.
"""

from __future__ import annotations

from http import HTTPStatus

from starlette.exceptions import HTTPException

from pageview_gateway.models import DownstreamOutcome


def _reason_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return f"HTTP {status_code}"


def outcome_from_status(status_code: int) -> DownstreamOutcome:
    """
    Outcome of a handler that answered with ``status_code``.
    """
    if status_code > 499:
        return DownstreamOutcome(status_code=status_code, error_message=_reason_phrase(status_code))
    return DownstreamOutcome(status_code=status_code)


def outcome_from_exception(exc: BaseException) -> DownstreamOutcome:
    """
    Outcome of a handler that raised instead of answering.
    """
    if isinstance(exc, HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else _reason_phrase(exc.status_code)
        return DownstreamOutcome(status_code=exc.status_code, error_message=detail)
    return DownstreamOutcome(status_code=500, error_message=str(exc) or type(exc).__name__)
