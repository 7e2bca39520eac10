from typing import Optional, Protocol

import httpx
from loguru import logger

from hl7_gateway.commons.payloads import to_order_payload, to_result_payload
from hl7_gateway.parsers.models import Notification, OrderNotification, ResultNotification


class NotificationSink(Protocol):
    async def deliver(self, notification: Notification) -> None: ...


class LoggingSink:
    """Sink used when the outbound bridge is disabled."""

    async def deliver(self, notification: Notification) -> None:
        if isinstance(notification, ResultNotification):
            logger.info(
                f"Result received for filler order {notification.filler_order_number}: "
                f"{len(notification.observations)} observation(s)"
            )
        else:
            logger.info(f"Order received: {notification}")


class HttpNotificationSink:
    """Posts notifications as JSON to the external order-management system.

    Failures are logged and dropped; retries belong to the receiving side.
    """

    def __init__(
        self,
        result_url: str,
        order_url: Optional[str] = None,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.result_url = result_url
        self.order_url = order_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def deliver(self, notification: Notification) -> None:
        if isinstance(notification, ResultNotification):
            await self._post(self.result_url, to_result_payload(notification), "result")
        elif isinstance(notification, OrderNotification):
            if not self.order_url:
                logger.info(f"Order {notification.placer_order_number} ready for processing (no order endpoint)")
                return
            await self._post(self.order_url, to_order_payload(notification), "order")
        else:
            logger.error(f"Cannot deliver {type(notification).__name__}")

    async def _post(self, url: str, body: dict, kind: str) -> None:
        try:
            resp = await self._get_client().post(url, json=body, timeout=self.timeout)
        except httpx.HTTPError as ex:
            logger.error(f"Error sending HL7 {kind} to {url}: {ex!r}")
            return
        if resp.is_success:
            logger.info(f"HL7 {kind} sent to {url}: {resp.status_code}")
        else:
            logger.error(f"HL7 {kind} rejected by {url}: {resp.status_code} {resp.text[:200]}")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
