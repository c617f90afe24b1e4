from __future__ import annotations

import logging

import httpx

from tracker.context import TrackerContext
from tracker.session import Emission

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """Raised when an event could not be delivered and should be retried."""

    def __init__(self, emission: Emission, reason: str) -> None:
        self.emission = emission
        self.reason = reason
        super().__init__(f"{emission.kind.value} for {emission.session_id}: {reason}")


class EventTransport:
    """POSTs tracker events as JSON to the ingestion endpoints."""

    def __init__(self, context: TrackerContext) -> None:
        self._owns_client = context.client is None
        self._client = context.client or httpx.AsyncClient(timeout=context.request_timeout)
        self._base = context.base_url.rstrip("/") + "/" + context.api_prefix.strip("/")
        self._access_token = context.access_token

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def send(self, emission: Emission) -> None:
        url = f"{self._base}/{emission.kind.value}"
        try:
            resp = await self._client.post(url, json=emission.payload, headers=self._headers())
        except httpx.RequestError as exc:
            raise DeliveryError(emission, f"network error: {exc}") from exc

        if resp.status_code >= 400:
            raise DeliveryError(emission, f"HTTP {resp.status_code}")
        logger.debug("Delivered %s for session %s", emission.kind.value, emission.session_id)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
