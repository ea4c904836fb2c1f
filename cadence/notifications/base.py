"""
Notification primitives — Notification dataclass and NotificationChannel ABC.

Every delivery target (Telegram, file log) implements NotificationChannel.
The NotificationRouter decides which ones fire.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cadence.runner.queue import RunResult


@dataclass
class Notification:
    """The outcome of one scheduled or heartbeat run, ready for delivery."""

    name: str
    content: str
    exit_code: int = 0
    fired_at: int = field(default_factory=lambda: int(time.time()))

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @classmethod
    def from_result(cls, name: str, result: "RunResult") -> "Notification":
        """Successful runs carry their output; failures carry the error text."""
        if result.ok:
            content = result.stdout.strip()
        else:
            content = f"Error (exit {result.exit_code}): {result.stderr.strip() or 'Unknown error'}"
        return cls(name=name, content=content, exit_code=result.exit_code)


class NotificationChannel(ABC):
    """
    Abstract delivery target.

    The router checks is_active first; inactive channels are skipped.
    deliver() returns True if the message was actually sent.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. 'telegram', 'file'."""
        ...

    @property
    @abstractmethod
    def is_active(self) -> bool:
        ...

    @property
    def is_external(self) -> bool:
        """External platforms (Telegram, …) are tried before the file log."""
        return False

    @abstractmethod
    async def deliver(self, notification: Notification) -> bool:
        ...
