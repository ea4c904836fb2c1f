"""
NotificationRouter — decides which channels receive each notification.

    1. Try every active EXTERNAL channel (Telegram, …).
    2. ALWAYS append to the file log, whatever happened in step 1.

Delivery never fails the caller: a run has already finished by the time
its notification is routed.
"""

from __future__ import annotations

import logging

from cadence.notifications.base import Notification, NotificationChannel

logger = logging.getLogger(__name__)


class NotificationRouter:
    """
    Usage:
        router = NotificationRouter()
        router.register(TelegramChannel(token, chat_id))
        router.register(FileChannel(state_dir / "notifications.log"))

        delivered = await router.route(notification)
    """

    def __init__(self) -> None:
        self._channels: list[NotificationChannel] = []

    def register(self, channel: NotificationChannel) -> None:
        """Register a channel. Order of registration doesn't affect routing."""
        self._channels.append(channel)
        logger.debug(f"Notification channel registered: {channel.name}")

    def unregister(self, name: str) -> None:
        self._channels = [c for c in self._channels if c.name != name]

    @property
    def channel_names(self) -> list[str]:
        return [c.name for c in self._channels]

    async def route(self, notification: Notification) -> list[str]:
        """Deliver *notification*; returns the names of channels that took it."""
        delivered: list[str] = []
        external = [c for c in self._channels if c.is_external]
        local = [c for c in self._channels if not c.is_external]

        # ── Step 1: external platforms ────────────────────────────────────────
        for channel in external:
            if not channel.is_active:
                continue
            if await self._deliver(channel, notification):
                delivered.append(channel.name)

        # ── Step 2: always the local record ───────────────────────────────────
        for channel in local:
            if channel.is_active and await self._deliver(channel, notification):
                delivered.append(channel.name)
        return delivered

    @staticmethod
    async def _deliver(channel: NotificationChannel, notification: Notification) -> bool:
        try:
            ok = await channel.deliver(notification)
        except Exception as e:
            logger.warning(f"Channel {channel.name} delivery failed: {e}")
            return False
        if ok:
            logger.debug(f"Notification {notification.name!r} delivered via {channel.name}")
        return ok
