"""
Logging Middleware — daemon log setup and an event trail on disk.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from cadence.core.bus import MiddlewareNext
from cadence.core.events import Event

DAEMON_LOG = "daemon.log"


def setup_logging(
    log_dir: Path,
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Setup Cadence logging.

    Args:
        log_dir: Directory for daemon.log (normally <state_dir>/logs)
        console_level: Minimum level for console output
        file_level: Minimum level for file output

    Returns:
        The configured "cadence" logger
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("cadence")
    logger.setLevel(logging.DEBUG)

    for handler in logger.handlers:
        handler.close()
    logger.handlers = []

    # Console handler (minimal output)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    # File handler (detailed output)
    log_file = log_dir / DAEMON_LOG
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(file_handler)

    logger.debug(f"Logging initialized. File: {log_file}")
    return logger


class EventLogger:
    """
    Writes every event passing through the bus as one JSON line.

    Usage:
        event_logger = EventLogger(log_dir)
        bus.use(event_logger.middleware)
    """

    def __init__(self, log_dir: Path, log_events: bool = True) -> None:
        self._log_dir = log_dir
        self._log_events = log_events
        self._logger = logging.getLogger("cadence.events")

    @property
    def events_file(self) -> Path:
        return self._log_dir / f"events_{datetime.now().strftime('%Y%m%d')}.jsonl"

    async def middleware(self, event: Event, next_handler: MiddlewareNext) -> Event:
        self._logger.debug(
            f"[{event.type}] source={event.source} "
            f"data_keys={list(event.data.keys()) if event.data else []}"
        )
        if self._log_events:
            self._write_event(event)
        return await next_handler(event)

    def _write_event(self, event: Event) -> None:
        record = {
            "timestamp": datetime.fromtimestamp(event.timestamp).isoformat(),
            "id": event.id,
            "type": event.type,
            "source": event.source,
            "data": self._safe_serialize(event.data),
        }
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            with open(self.events_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            self._logger.warning(f"Failed to write event log: {e}")

    @staticmethod
    def _safe_serialize(data: dict) -> dict:
        result = {}
        for key, value in data.items():
            try:
                json.dumps(value)
                result[key] = value
            except (TypeError, ValueError):
                result[key] = str(value)
        return result
