"""
Analytics collector integration (Measurement Protocol).

Uses the shared httpx.AsyncClient. One attempt per event, no retries.
"""

from __future__ import annotations

import asyncio

import httpx

COLLECT_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"


async def post_collect(
    client: httpx.AsyncClient,
    url: str,
    payload: str,
    timeout_seconds: float,
) -> httpx.Response:
    """
    POST one URL-encoded hit to the collector.

    ``timeout_seconds`` caps the whole exchange, not just each socket
    operation; asyncio.TimeoutError is raised when it runs out.
    """
    headers = {"Content-Type": COLLECT_CONTENT_TYPE}
    return await asyncio.wait_for(
        client.post(
            url,
            headers=headers,
            content=payload.encode("utf-8"),
            timeout=timeout_seconds,
        ),
        timeout=timeout_seconds,
    )
