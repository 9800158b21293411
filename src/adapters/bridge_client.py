"""WhatsApp bridge HTTP adapter.

Talks to the local bridge process's REST API and implements the core
BridgePort. Failures are reported as SendResult values, never raised.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from core.models import SendResult

LOGGER = logging.getLogger(__name__)

# The bridge answers a recipient-less request with this body when it is up.
PING_ALIVE_MARKER = "Recipient is required"


class BridgeClient:
    """Async client for the bridge's ``/api/send`` endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        send_timeout: float = 15.0,
        ping_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._send_timeout = send_timeout
        self._ping_timeout = ping_timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base

    def _endpoint(self) -> str:
        return f"{self._base}/api/send"

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def send_text(self, recipient: str, message: str) -> SendResult:
        """POST a text message; only a 2xx answer without ``success: false`` counts."""

        payload = {"recipient": recipient, "message": message}
        try:
            async with self._client(self._send_timeout) as client:
                response = await client.post(self._endpoint(), json=payload)
        except httpx.HTTPError as exc:
            LOGGER.error("Bridge request failed: %s", exc)
            return SendResult(success=False, error=str(exc) or exc.__class__.__name__)

        if response.is_error:
            body = response.text.strip()
            LOGGER.error("Bridge error %s: %s", response.status_code, body)
            return SendResult(success=False, error=f"Bridge error {response.status_code}: {body}")

        data = _json_or_text(response)
        if isinstance(data, dict) and data.get("success") is False:
            error = str(data.get("message") or "Bridge reported failure")
            return SendResult(success=False, error=error, data=data)
        return SendResult(success=True, data=data)

    async def ping(self) -> bool:
        """Liveness probe: a recipient-less request must be rejected politely."""

        try:
            async with self._client(self._ping_timeout) as client:
                response = await client.post(self._endpoint(), json={"test": "ping"})
        except httpx.HTTPError as exc:
            LOGGER.error("Bridge unreachable at %s: %s", self._base, exc)
            return False

        if response.status_code == 200:
            return True
        if response.text.strip() == PING_ALIVE_MARKER:
            LOGGER.info("Bridge is up at %s", self._base)
            return True
        LOGGER.error("Bridge ping failed with status %s", response.status_code)
        return False


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
