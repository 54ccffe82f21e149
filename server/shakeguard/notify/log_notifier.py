"""Notifier that only logs and remembers what it was asked to send."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from shakeguard.core.models import Notification

log = structlog.get_logger()


class LogNotifier:
    """Notifier for development: every send succeeds and is logged."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        log.info("notification_sent", user=notification.user_id,
                 priority=notification.priority.value,
                 title=notification.title)
        return True
