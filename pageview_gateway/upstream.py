"""
Upstream site integration: the default downstream handler behind the gateway.

Forwards each request once with httpx.AsyncClient. No retries, since proxied
requests are not necessarily idempotent.
"""

from __future__ import annotations

from typing import Dict, Iterable, Tuple

import httpx
from fastapi import Request

# RFC 7230 section 6.1 hop-by-hop headers, never forwarded.
_HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}


def _end_to_end(headers: Iterable[Tuple[str, str]], *drop: str) -> Dict[str, str]:
    skip = _HOP_BY_HOP_HEADERS.union(drop)
    return {k: v for k, v in headers if k.lower() not in skip}


def filter_response_headers(headers: httpx.Headers) -> Dict[str, str]:
    """
    Headers of an upstream response that can be relayed to the client.
    """
    return _end_to_end(headers.items(), "content-length", "content-encoding")


async def forward_request(
    client: httpx.AsyncClient,
    base_url: str,
    request: Request,
    timeout_seconds: float,
) -> httpx.Response:
    """
    Send the inbound request to the upstream site and return its response.
    """
    url = f"{base_url.rstrip('/')}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"

    headers = _end_to_end(request.headers.items(), "host", "content-length")
    body = await request.body()

    return await client.request(
        request.method,
        url,
        headers=headers,
        content=body,
        timeout=timeout_seconds,
    )
