"""
Pydantic v2 configuration model and per-request value objects.

The tracking configuration is validated once at provisioning and is immutable
afterwards, so it can be shared by every in-flight request without locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator
from starlette.requests import Request

from pageview_gateway.validation import (
    ConfigurationError,
    validate_session_cookie_name,
    validate_tracking_id,
)

PROTOCOL_VERSION = "1"
HIT_TYPE = "pageview"
DATA_SOURCE = "web"
DEFAULT_COLLECTOR_URL = "http://www.google-analytics.com/collect"


class TrackingConfig(BaseModel):
    """
    Validated tracking configuration with the precomputed payload prefix.
    """

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)

    tracking_id: str
    session_cookie_name: str
    collector_url: str = Field(default=DEFAULT_COLLECTOR_URL, min_length=1)
    collector_timeout_seconds: float = Field(default=1.0, gt=0.0, le=30.0)

    # Parts of the POST body that do not change with every request.
    _payload_prefix: str = PrivateAttr(default="")

    @field_validator("tracking_id")
    @classmethod
    def _check_tracking_id(cls, value: str) -> str:
        return validate_tracking_id(value)

    @field_validator("session_cookie_name")
    @classmethod
    def _check_session_cookie_name(cls, value: str) -> str:
        return validate_session_cookie_name(value)

    def model_post_init(self, _context: Any) -> None:
        prefix = [("v", PROTOCOL_VERSION), ("t", HIT_TYPE), ("tid", self.tracking_id)]
        self._payload_prefix = urlencode(sorted(prefix))

    @property
    def payload_prefix(self) -> str:
        return self._payload_prefix

    @classmethod
    def provision(cls, **values: Any) -> "TrackingConfig":
        """
        Build a config, reporting any invalid value as a ConfigurationError.
        """
        try:
            return cls(**values)
        except ValidationError as exc:
            first = exc.errors()[0]
            cause = (first.get("ctx") or {}).get("error")
            if isinstance(cause, ConfigurationError):
                raise cause from exc
            field_name = ".".join(str(p) for p in first.get("loc", ()))
            raise ConfigurationError(f"invalid {field_name}: {first.get('msg')}") from exc


def raw_request_uri(request: Request) -> str:
    """
    Path and query exactly as the client sent them, without scheme or host.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.scope.get("query_string") or b""
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


@dataclass(frozen=True)
class RequestInfo:
    """
    The parts of an inbound request that end up in a tracking event.
    """

    url: str
    user_agent: str = ""
    remote_addr: str = ""
    referer: str = ""
    accept_language: str = ""

    @classmethod
    def from_request(cls, request: Request) -> "RequestInfo":
        remote_addr = ""
        if request.client is not None:
            remote_addr = f"{request.client.host}:{request.client.port}"
        return cls(
            url=raw_request_uri(request),
            user_agent=request.headers.get("user-agent", ""),
            remote_addr=remote_addr,
            referer=request.headers.get("referer", ""),
            accept_language=request.headers.get("accept-language", ""),
        )


@dataclass(frozen=True)
class DownstreamOutcome:
    """
    Status code and error description observed from the downstream handler.

    A status code of 0 means success with no detail.
    """

    status_code: int = 0
    error_message: str = ""

    @property
    def failed(self) -> bool:
        return self.status_code > 499


@dataclass(frozen=True)
class TrackingEvent:
    """
    One pageview hit, built after the downstream handler has finished.
    """

    client_id: str
    document_location: str
    user_agent: str
    client_ip: str
    data_source: str = DATA_SOURCE
    referrer: Optional[str] = None
    language: Optional[str] = None
    exception_description: Optional[str] = None

    def form_fields(self) -> dict:
        fields = {
            "cid": self.client_id,
            "dl": self.document_location,
            "ds": self.data_source,
            "ua": self.user_agent,
            "uip": self.client_ip,
        }
        if self.referrer:
            fields["dr"] = self.referrer
        if self.language:
            fields["ul"] = self.language
        if self.exception_description is not None:
            fields["exf"] = self.exception_description
        return fields
