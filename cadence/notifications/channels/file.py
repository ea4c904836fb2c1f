"""
FileChannel — always-on record appended to <state_dir>/notifications.log.
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path

import aiofiles

from cadence.notifications.base import Notification, NotificationChannel

logger = logging.getLogger(__name__)


class FileChannel(NotificationChannel):
    """Appends notifications to a plain-text log file. Always active."""

    def __init__(self, log_path: Path) -> None:
        self._log_path = log_path

    @property
    def name(self) -> str:
        return "file"

    @property
    def is_active(self) -> bool:
        return True

    @property
    def path(self) -> Path:
        return self._log_path

    async def deliver(self, notification: Notification) -> bool:
        ts = datetime.datetime.fromtimestamp(notification.fired_at).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
        entry = (
            f"[{ts}] [{notification.name}] exit={notification.exit_code}\n"
            f"{notification.content}\n"
            f"{'─' * 60}\n"
        )
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self._log_path, "a", encoding="utf-8") as f:
                await f.write(entry)
        except OSError as e:
            logger.warning(f"FileChannel write failed: {e}")
            return False
        return True
