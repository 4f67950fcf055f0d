"""
HTTP middleware for session identity and pageview tracking.

Per request:
- resolve (or mint) the client identifier from the session cookie
- call the downstream handler
- report the hit in the background, never delaying or failing the response

Pure ASGI rather than ``call_next``: the identity cookie is written into
``http.response.start`` itself, so it also lands on error responses.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from fastapi import FastAPI, Request
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from pageview_gateway.identity import DeferredCookies, resolve_identity
from pageview_gateway.models import DownstreamOutcome, RequestInfo, TrackingConfig
from pageview_gateway.outcome import outcome_from_exception, outcome_from_status
from pageview_gateway.reporter import EventReporter
from pageview_gateway.validation import IdentityGenerationError

logger = logging.getLogger(__name__)


class TrackingMiddleware:
    """
    ASGI middleware ensuring a session cookie and reporting the request.
    """

    def __init__(
        self,
        app: ASGIApp,
        config: TrackingConfig,
        reporter: EventReporter,
        untracked_paths: Iterable[str] = (),
    ) -> None:
        self.app = app
        self.config = config
        self.reporter = reporter
        self.untracked_paths = frozenset(untracked_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in self.untracked_paths:
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        cookies = DeferredCookies()
        client_id: Optional[str] = None
        try:
            client_id = resolve_identity(request.cookies, cookies, self.config)
        except IdentityGenerationError:
            logger.exception("could not assign a client identifier, serving untracked")

        request_info = RequestInfo.from_request(request)
        cookie_headers = cookies.raw_headers()
        status_code = 0
        response_started = False

        async def send_with_cookie(message: Any) -> None:
            nonlocal status_code, response_started
            if message["type"] == "http.response.start":
                response_started = True
                status_code = message["status"]
                if cookie_headers:
                    headers = list(message.get("headers", []))
                    headers.extend(cookie_headers)
                    message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_cookie)
        except Exception as exc:
            if not response_started:
                # Answer here so the 500 carries the cookie; the error still propagates.
                error_response = PlainTextResponse("Internal Server Error", status_code=500)
                await error_response(scope, receive, send_with_cookie)
            if client_id is not None:
                self._report(client_id, request_info, outcome_from_exception(exc))
            raise

        if client_id is not None:
            self._report(client_id, request_info, outcome_from_status(status_code))

    def _report(self, client_id: str, request_info: RequestInfo, outcome: DownstreamOutcome) -> None:
        # Dispatch problems never reach the client.
        try:
            self.reporter.report(client_id, request_info, outcome)
        except Exception:
            logger.exception("could not dispatch tracking event")


def install_tracking(
    app: FastAPI,
    config: TrackingConfig,
    reporter: EventReporter,
    untracked_paths: Iterable[str] = (),
) -> None:
    """
    Attach the tracking middleware and its collaborators to an application.
    """
    app.state.tracking_config = config
    app.state.reporter = reporter
    app.add_middleware(
        TrackingMiddleware,
        config=config,
        reporter=reporter,
        untracked_paths=untracked_paths,
    )
