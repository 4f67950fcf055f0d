"""
Session identity: one durable client identifier per browser, kept in a cookie.

The browser is the only store. A request carrying a non-empty identity cookie
is trusted as-is; otherwise a fresh version-4 UUID is minted and written back.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Mapping, Protocol, Tuple

from starlette.responses import Response

from pageview_gateway.models import TrackingConfig
from pageview_gateway.validation import IdentityGenerationError

# Effectively non-expiring, relative to now rather than a fixed 32-bit epoch.
COOKIE_LIFETIME = timedelta(days=365 * 20)


@dataclass(frozen=True)
class SessionCookie:
    name: str
    value: str
    expires: datetime
    secure: bool = True
    httponly: bool = True


class CookieSink(Protocol):
    def set_cookie(self, cookie: SessionCookie) -> None:
        ...


class DeferredCookies:
    """
    Collects cookies before the downstream response exists, then applies them.
    """

    def __init__(self) -> None:
        self.cookies: List[SessionCookie] = []

    def set_cookie(self, cookie: SessionCookie) -> None:
        self.cookies.append(cookie)

    def apply(self, response: Response) -> None:
        for cookie in self.cookies:
            response.set_cookie(
                key=cookie.name,
                value=cookie.value,
                expires=cookie.expires,
                secure=cookie.secure,
                httponly=cookie.httponly,
            )

    def raw_headers(self) -> List[Tuple[bytes, bytes]]:
        """
        The collected cookies as raw ``set-cookie`` header pairs.
        """
        response = Response()
        self.apply(response)
        return [(k, v) for k, v in response.raw_headers if k == b"set-cookie"]


def generate_client_id() -> str:
    try:
        return str(uuid.uuid4())
    except (OSError, NotImplementedError) as exc:
        raise IdentityGenerationError(f"uuid generation error: {exc}") from exc


def resolve_identity(
    request_cookies: Mapping[str, str],
    sink: CookieSink,
    config: TrackingConfig,
) -> str:
    """
    Return the client identifier for this request, minting one if needed.

    Any non-empty cookie value is returned unchanged; identifiers set by other
    systems are not required to be UUIDs. Raises IdentityGenerationError when
    a new identifier cannot be generated, in which case nothing is written.
    """
    client_id = request_cookies.get(config.session_cookie_name)
    if client_id:
        return client_id

    client_id = generate_client_id()
    sink.set_cookie(
        SessionCookie(
            name=config.session_cookie_name,
            value=client_id,
            expires=datetime.now(timezone.utc) + COOKIE_LIFETIME,
        )
    )
    return client_id
