"""
Pageview tracking gateway - FastAPI entry point.

Implements:
- Session identity cookie on every tracked response
- Fire-and-forget pageview hits to the analytics collector
- Optional reverse proxy to the site behind the gateway
- /health (dispatcher counters)
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from pageview_gateway.config import Settings, settings as default_settings
from pageview_gateway.dispatch import BackgroundDispatcher
from pageview_gateway.middleware import install_tracking
from pageview_gateway.models import TrackingConfig
from pageview_gateway.monitoring import build_health_status, configure_logging
from pageview_gateway.reporter import EventReporter
from pageview_gateway.upstream import filter_response_headers, forward_request

logger = logging.getLogger(__name__)

_PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Raises ConfigurationError before anything is served if the tracking ID or
    session cookie name is invalid.
    """
    settings = settings or default_settings
    configure_logging(settings.log_level)

    tracking_config = TrackingConfig.provision(
        tracking_id=settings.tracking_id,
        session_cookie_name=settings.session_cookie_name,
        collector_url=settings.collector_url,
        collector_timeout_seconds=settings.collector_timeout_seconds,
    )

    app = FastAPI(title=settings.service_name)

    # Reusable pooled async HTTP client, shared by every dispatch unit
    app.state.http_client = http_client or httpx.AsyncClient(
        http2=True,
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.dispatcher = BackgroundDispatcher(max_pending=settings.dispatch_max_pending)
    reporter = EventReporter(tracking_config, app.state.http_client, app.state.dispatcher)
    install_tracking(app, tracking_config, reporter, untracked_paths=settings.untracked_paths)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.dispatcher.drain(timeout=settings.collector_timeout_seconds + 1)
        await app.state.http_client.aclose()

    @app.get("/health")
    async def health() -> JSONResponse:
        """
        Health endpoint with background dispatch counters.
        """
        status = build_health_status(app.state.dispatcher)
        return JSONResponse(
            status_code=200 if status.ok else 503,
            content={"ok": status.ok, "details": status.details},
        )

    @app.api_route("/{path:path}", methods=_PROXY_METHODS)
    async def proxy(request: Request, path: str) -> Response:
        """
        Forward everything else to the upstream site, if one is configured.
        """
        if not settings.upstream_base_url:
            return JSONResponse(
                status_code=404,
                content={"error": {"message": "No upstream configured.", "code": "not_found"}},
            )

        try:
            upstream_resp = await forward_request(
                client=app.state.http_client,
                base_url=settings.upstream_base_url,
                request=request,
                timeout_seconds=settings.upstream_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            logger.warning("upstream request failed: %s", exc)
            return JSONResponse(
                status_code=502,
                content={
                    "error": {
                        "message": "Upstream request failed.",
                        "code": "upstream_unreachable",
                        "details": str(exc),
                    }
                },
            )

        return Response(
            content=upstream_resp.content,
            status_code=upstream_resp.status_code,
            headers=filter_response_headers(upstream_resp.headers),
        )

    logger.info(
        "tracking %s with session cookie %r",
        tracking_config.tracking_id,
        tracking_config.session_cookie_name,
    )
    return app
