"""Notification sink interface (port)."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from shakeguard.core.models import Notification


class Notifier(Protocol):
    """Port: push-notification delivery. Best effort, no delivery guarantee."""

    async def send(self, notification: Notification) -> bool: ...
