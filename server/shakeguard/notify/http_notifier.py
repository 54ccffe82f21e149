"""Notifier that POSTs notifications to a push gateway as JSON."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

if TYPE_CHECKING:
    from shakeguard.core.models import Notification

log = structlog.get_logger()


class HttpNotifier:
    """Notifier backed by an HTTP push gateway.

    Any 2xx response counts as delivered. Transport errors and other
    statuses are logged and reported as ``False``; nothing is retried.
    """

    def __init__(self, url: str, timeout_s: float = 10.0,
                 client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def send(self, notification: Notification) -> bool:
        try:
            resp = await self._client.post(self._url, json=notification.to_dict())
        except httpx.HTTPError:
            log.error("notification_transport_failed", user=notification.user_id,
                      exc_info=True)
            return False
        if not resp.is_success:
            log.warning("notification_rejected", user=notification.user_id,
                        status=resp.status_code)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
