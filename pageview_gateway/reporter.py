"""
Event reporting: turns a finished request into a pageview hit and ships it.

Shipping is fire-and-forget. ``EventReporter.report`` hands one unit to the
dispatcher and returns; the collector's answer, or the lack of one, is only
ever logged.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

import httpx

from pageview_gateway.collector import post_collect
from pageview_gateway.dispatch import BackgroundDispatcher
from pageview_gateway.models import DownstreamOutcome, RequestInfo, TrackingConfig, TrackingEvent

logger = logging.getLogger(__name__)


def client_ip(remote_addr: str) -> str:
    """
    Host portion of a remote address: everything before the first ':'.
    """
    return remote_addr.split(":")[0]


def build_event(client_id: str, request_info: RequestInfo, outcome: DownstreamOutcome) -> TrackingEvent:
    """
    Apply the field rules to one finished request.
    """
    return TrackingEvent(
        client_id=client_id,
        document_location=request_info.url,
        user_agent=request_info.user_agent,
        client_ip=client_ip(request_info.remote_addr),
        referrer=request_info.referer or None,
        language=request_info.accept_language or None,
        exception_description=outcome.error_message if outcome.failed else None,
    )


def encode_payload(config: TrackingConfig, event: TrackingEvent) -> str:
    """
    Form-encoded POST body: the cached prefix, then the event fields.
    """
    fields = event.form_fields()
    return config.payload_prefix + "&" + urlencode(sorted(fields.items()))


class EventReporter:
    """
    Builds pageview hits and dispatches them to the collector in the background.
    """

    def __init__(
        self,
        config: TrackingConfig,
        client: httpx.AsyncClient,
        dispatcher: BackgroundDispatcher,
    ) -> None:
        self.config = config
        self.client = client
        self.dispatcher = dispatcher

    def report(self, client_id: str, request_info: RequestInfo, outcome: DownstreamOutcome) -> bool:
        """
        Queue one hit for background delivery; False if it was dropped.
        """
        event = build_event(client_id, request_info, outcome)
        payload = encode_payload(self.config, event)
        return self.dispatcher.submit(self._send(payload), name=f"collect-{client_id}")

    async def _send(self, payload: str) -> None:
        try:
            resp = await post_collect(
                self.client,
                self.config.collector_url,
                payload,
                self.config.collector_timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.warning("collector timed out after %.1fs", self.config.collector_timeout_seconds)
            return
        except httpx.HTTPError as exc:
            logger.warning("collector request failed: %s", exc)
            return

        if resp.is_success:
            logger.debug("collector accepted hit (%d)", resp.status_code)
        else:
            logger.warning("collector rejected hit with status %d", resp.status_code)
