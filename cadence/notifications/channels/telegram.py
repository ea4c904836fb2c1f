"""
TelegramChannel — delivers run results via a Telegram bot.

Requires config:
    [telegram]
    token   = "BOT_TOKEN"
    chat_id = "YOUR_CHAT_ID"

Messages longer than Telegram's limit are split into several sends.
"""

from __future__ import annotations

import logging

import httpx

from cadence.notifications.base import Notification, NotificationChannel

logger = logging.getLogger(__name__)

_TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"
MAX_MESSAGE_LENGTH = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split on line breaks where possible, hard-cut lines longer than *limit*."""
    if len(text) <= limit:
        return [text]
    chunks: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks


class TelegramChannel(NotificationChannel):
    """
    is_external = True  →  tried before the file log.
    is_active   = True only when token + chat_id are configured.
    """

    def __init__(
        self,
        token: str = "",
        chat_id: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token.strip()
        self._chat_id = str(chat_id).strip()
        self._transport = transport

    @property
    def name(self) -> str:
        return "telegram"

    @property
    def is_external(self) -> bool:
        return True

    @property
    def is_active(self) -> bool:
        return bool(self._token and self._chat_id)

    def format(self, notification: Notification) -> str:
        icon = "⏰" if notification.ok else "⚠️"
        return f"{icon} {notification.name}\n\n{notification.content}"

    async def deliver(self, notification: Notification) -> bool:
        if not self.is_active:
            return False
        url = _TELEGRAM_API.format(token=self._token)
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                for chunk in split_message(self.format(notification)):
                    resp = await client.post(
                        url,
                        json={"chat_id": self._chat_id, "text": chunk},
                    )
                    resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Telegram delivery failed: {e}")
            return False
        logger.debug(f"Telegram notification sent to {self._chat_id}")
        return True
