import asyncio
from typing import Callable, List, Optional
from urllib.parse import parse_qsl

import httpx
import pytest

from pageview_gateway.dispatch import BackgroundDispatcher
from pageview_gateway.models import TrackingConfig
from pageview_gateway.reporter import EventReporter

COLLECTOR_URL = "http://collector.test/collect"


class CollectorStub:
    """Records every hit posted to the collector; optionally blocks or fails."""

    def __init__(self, status_code: int = 200, error: Optional[Exception] = None) -> None:
        self.requests: List[httpx.Request] = []
        self.status_code = status_code
        self.error = error
        self.release: Optional[asyncio.Event] = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.release is not None:
            await self.release.wait()
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code)

    @property
    def hits(self) -> List[dict]:
        return [dict(parse_qsl(r.content.decode("utf-8"))) for r in self.requests]


def routing_transport(collector: CollectorStub, upstream: Optional[Callable] = None) -> httpx.MockTransport:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "collector.test":
            return await collector(request)
        if upstream is None:
            raise httpx.ConnectError("no upstream", request=request)
        return upstream(request)

    return httpx.MockTransport(handler)


@pytest.fixture
def tracking_config() -> TrackingConfig:
    return TrackingConfig.provision(
        tracking_id="UA-1234-5",
        session_cookie_name="test-session",
        collector_url=COLLECTOR_URL,
    )


@pytest.fixture
def collector() -> CollectorStub:
    return CollectorStub()


@pytest.fixture
def make_reporter(tracking_config, collector):
    """Build a reporter inside a running loop; returns (reporter, client)."""

    def _make(max_pending: int = 1000):
        client = httpx.AsyncClient(transport=routing_transport(collector))
        dispatcher = BackgroundDispatcher(max_pending=max_pending)
        return EventReporter(tracking_config, client, dispatcher), client

    return _make
