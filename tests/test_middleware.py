import asyncio
import logging
import re

import httpx
import pytest
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse, Response

from pageview_gateway import identity
from pageview_gateway.dispatch import BackgroundDispatcher
from pageview_gateway.middleware import install_tracking
from pageview_gateway.reporter import EventReporter

from .conftest import routing_transport

UUID4_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


def _build_app(tracking_config, collector):
    app = FastAPI()
    http_client = httpx.AsyncClient(transport=routing_transport(collector))
    dispatcher = BackgroundDispatcher()
    install_tracking(
        app,
        tracking_config,
        EventReporter(tracking_config, http_client, dispatcher),
        untracked_paths=("/ping",),
    )
    app.state.dispatcher = dispatcher

    @app.api_route("/example", methods=["GET", "POST"])
    async def example() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/ping")
    async def ping() -> PlainTextResponse:
        return PlainTextResponse("pong")

    @app.get("/broken")
    async def broken() -> Response:
        return Response(status_code=500)

    @app.get("/maintenance")
    async def maintenance() -> Response:
        raise HTTPException(status_code=503, detail="maintenance")

    @app.get("/boom")
    async def boom() -> Response:
        raise RuntimeError("database unavailable")

    return app


async def _send(app, method, url, **kwargs):
    transport = httpx.ASGITransport(app=app, client=("203.0.113.7", 51234))
    async with httpx.AsyncClient(transport=transport, base_url="http://example.com") as client:
        response = await client.request(method, url, **kwargs)
    await app.state.dispatcher.drain()
    return response


def _session_cookie(response):
    return [h for h in response.headers.get_list("set-cookie") if h.startswith("test-session=")]


def test_new_client_gets_cookie_and_matching_cid(tracking_config, collector):
    app = _build_app(tracking_config, collector)
    response = asyncio.run(
        _send(
            app,
            "POST",
            "/example?a=b",
            headers={
                "Accept-Language": "it",
                "User-Agent": "firefox",
                "Referer": "http://example.com/source",
            },
        )
    )

    assert response.status_code == 200
    cookies = _session_cookie(response)
    assert len(cookies) == 1
    assert "Secure" in cookies[0] and "HttpOnly" in cookies[0]
    client_id = cookies[0].split(";")[0].split("=", 1)[1]
    assert UUID4_RE.match(client_id)

    assert len(collector.hits) == 1
    hit = collector.hits[0]
    assert hit["cid"] == client_id
    assert hit["ul"] == "it"
    assert hit["ua"] == "firefox"
    assert hit["dr"] == "http://example.com/source"
    assert hit["dl"] == "/example?a=b"
    assert hit["tid"] == "UA-1234-5"
    assert hit["uip"] == "203.0.113.7"
    assert hit["ds"] == "web"
    assert "exf" not in hit


def test_returning_client_keeps_its_identifier(tracking_config, collector):
    app = _build_app(tracking_config, collector)
    response = asyncio.run(_send(app, "GET", "/example", headers={"Cookie": "test-session=returning-visitor"}))

    assert _session_cookie(response) == []
    assert collector.hits[0]["cid"] == "returning-visitor"


def test_empty_cookie_value_is_replaced(tracking_config, collector):
    app = _build_app(tracking_config, collector)
    response = asyncio.run(_send(app, "GET", "/example", headers={"Cookie": "test-session="}))

    cookies = _session_cookie(response)
    assert len(cookies) == 1
    assert collector.hits[0]["cid"] == cookies[0].split(";")[0].split("=", 1)[1]


def test_server_error_response_reported_with_exf(tracking_config, collector):
    app = _build_app(tracking_config, collector)
    response = asyncio.run(_send(app, "GET", "/broken"))

    assert response.status_code == 500
    assert collector.hits[0]["exf"] == "Internal Server Error"


def test_http_exception_reported_from_response(tracking_config, collector):
    app = _build_app(tracking_config, collector)
    response = asyncio.run(_send(app, "GET", "/maintenance"))

    assert response.status_code == 503
    assert collector.hits[0]["exf"] == "Service Unavailable"


def test_downstream_exception_propagates_and_is_reported(tracking_config, collector):
    app = _build_app(tracking_config, collector)

    async def scenario():
        with pytest.raises(RuntimeError, match="database unavailable"):
            await _send(app, "GET", "/boom")
        await app.state.dispatcher.drain()

    asyncio.run(scenario())

    assert collector.hits[0]["exf"] == "database unavailable"


def test_handler_returns_before_collector_answers(tracking_config, collector):
    app = _build_app(tracking_config, collector)

    async def scenario():
        collector.release = asyncio.Event()
        transport = httpx.ASGITransport(app=app, client=("203.0.113.7", 51234))
        async with httpx.AsyncClient(transport=transport, base_url="http://example.com") as client:
            response = await client.get("/example")
        pending = (len(collector.requests), app.state.dispatcher.in_flight)
        collector.release.set()
        await app.state.dispatcher.drain()
        return response, pending

    response, pending = asyncio.run(scenario())
    assert response.status_code == 200
    assert pending == (0, 1)
    assert len(collector.hits) == 1


def test_collector_failure_never_reaches_client(tracking_config, collector):
    collector.error = httpx.ConnectError("collector down")
    app = _build_app(tracking_config, collector)
    response = asyncio.run(_send(app, "GET", "/example"))

    assert response.status_code == 200
    assert response.text == "ok"
    assert len(_session_cookie(response)) == 1


def test_identity_failure_serves_untracked(tracking_config, collector, monkeypatch, caplog):
    def broken_uuid4():
        raise OSError("no entropy")

    monkeypatch.setattr(identity.uuid, "uuid4", broken_uuid4)
    app = _build_app(tracking_config, collector)

    with caplog.at_level(logging.ERROR, logger="pageview_gateway.middleware"):
        response = asyncio.run(_send(app, "GET", "/example"))

    assert response.status_code == 200
    assert response.text == "ok"
    assert _session_cookie(response) == []
    assert collector.requests == []
    assert any("client identifier" in m for m in caplog.messages)


def test_untracked_path_is_left_alone(tracking_config, collector):
    app = _build_app(tracking_config, collector)
    response = asyncio.run(_send(app, "GET", "/ping"))

    assert response.text == "pong"
    assert _session_cookie(response) == []
    assert collector.requests == []


def test_cookie_survives_downstream_exception(tracking_config, collector):
    app = _build_app(tracking_config, collector)

    async def scenario():
        transport = httpx.ASGITransport(
            app=app,
            raise_app_exceptions=False,
            client=("203.0.113.7", 51234),
        )
        async with httpx.AsyncClient(transport=transport, base_url="http://example.com") as client:
            response = await client.get("/boom")
        await app.state.dispatcher.drain()
        return response

    response = asyncio.run(scenario())

    assert response.status_code == 500
    cookies = _session_cookie(response)
    assert len(cookies) == 1
    assert collector.hits[0]["cid"] == cookies[0].split(";")[0].split("=", 1)[1]
    assert collector.hits[0]["exf"] == "database unavailable"


def test_document_location_is_raw_request_uri(tracking_config, collector):
    app = _build_app(tracking_config, collector)
    asyncio.run(_send(app, "GET", "/a%2Fb/caf%C3%A9?q=1", headers={"Host": "evil.test"}))

    assert collector.hits[0]["dl"] == "/a%2Fb/caf%C3%A9?q=1"
