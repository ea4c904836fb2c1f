"""
SessionState — the agent's continuation handle, persisted to disk.

File: <state_dir>/session.json
    {"session_id": "...", "created_at": ISO, "last_used_at": ISO}

Archives: <state_dir>/session_<N>.backup  (N = highest existing + 1, from 1)

At most one live session exists. The id is always assigned by the agent
on its first successful new-session run; nothing here invents one.

Every reset() and backup() bumps ``generation``. A new-session run reads
the generation before its lookup and hands it back to create(); if the
session was reset in the meantime, the id it got is discarded instead of
resurrecting a conversation the user just threw away.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path

import aiofiles
import aiofiles.os

from cadence.core.bus import EventBus, emit_if
from cadence.core.errors import SessionPersistError
from cadence.core.events import Event, EventType

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"
_BACKUP_NAME = re.compile(r"^session_(\d+)\.backup$")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SessionRecord:
    session_id: str
    created_at: str
    last_used_at: str

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "last_used_at": self.last_used_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SessionRecord":
        return cls(
            session_id=str(d["session_id"]),
            created_at=str(d.get("created_at", "")),
            last_used_at=str(d.get("last_used_at", "")),
        )

    @property
    def short_id(self) -> str:
        return self.session_id[:8]


def next_backup_index(names: list[str]) -> int:
    """Highest used archive index + 1; 1 when there are none."""
    indices = [int(m.group(1)) for m in map(_BACKUP_NAME.match, names) if m]
    return max(indices) + 1 if indices else 1


class SessionState:
    """
    Owned session record with an in-memory cache and its own lock.

    Usage:
        sessions = SessionState(state_dir)
        current = await sessions.get()        # stamps last_used_at
        await sessions.create("abc-123")      # after a new-session run
        info = await sessions.peek()          # read-only
        await sessions.reset()
        archive = await sessions.backup()     # "session_3.backup" | None
    """

    def __init__(self, state_dir: Path, bus: EventBus | None = None) -> None:
        self._dir = state_dir
        self._path = state_dir / SESSION_FILE
        self._bus = bus
        self._current: SessionRecord | None = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def generation(self) -> int:
        return self._generation

    # ── Operations ───────────────────────────────────────────────────────────

    async def get(self) -> SessionRecord | None:
        """Existing session with last_used_at stamped, or None. Never creates one."""
        async with self._lock:
            record = await self._load()
            if record is None:
                return None
            record.last_used_at = _now_iso()
            try:
                await self._save(record)
            except OSError as e:
                logger.warning(f"Could not stamp session last-used time: {e}")
            return replace(record)

    async def peek(self) -> SessionRecord | None:
        """Session metadata without touching last_used_at."""
        async with self._lock:
            record = await self._load()
            return replace(record) if record else None

    async def create(self, session_id: str, generation: int | None = None) -> bool:
        """
        Replace the live session with a fresh record for *session_id*.

        Returns False (and keeps nothing) when *generation* is given and a
        reset or backup happened since it was read.

        Raises:
            SessionPersistError: the record could not be written. The id is
                still cached, so later runs in this process resume it.
        """
        async with self._lock:
            if generation is not None and generation != self._generation:
                logger.warning(
                    f"Discarding session {session_id[:8]}: reset while the run was in flight"
                )
                await emit_if(self._bus, Event(
                    type=EventType.SESSION_DISCARDED,
                    source="session",
                    data={"session_id": session_id},
                ))
                return False

            now = _now_iso()
            record = SessionRecord(session_id=session_id, created_at=now, last_used_at=now)
            self._current = record
            try:
                await self._save(record)
            except OSError as e:
                raise SessionPersistError(
                    session_id,
                    f"Session {session_id} was created but could not be saved to {self._path}: {e}",
                ) from e

        logger.info(f"Session created: {session_id}")
        await emit_if(self._bus, Event(
            type=EventType.SESSION_CREATED,
            source="session",
            data={"session_id": session_id},
        ))
        return True

    async def reset(self) -> None:
        """Forget the live session; the next run starts a new one."""
        async with self._lock:
            self._current = None
            self._generation += 1
            try:
                await aiofiles.os.remove(self._path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not delete {self._path}: {e}")
        logger.info("Session reset")
        await emit_if(self._bus, Event(type=EventType.SESSION_RESET, source="session"))

    async def backup(self) -> str | None:
        """
        Move the live session into the next numbered archive slot.

        Returns the archive file name, or None when there is no session.
        """
        async with self._lock:
            record = await self._load()
            if record is None:
                return None

            try:
                names = [p.name for p in self._dir.iterdir()]
            except OSError:
                names = []
            name = f"session_{next_backup_index(names)}.backup"
            target = self._dir / name

            if self._path.exists():
                await aiofiles.os.rename(self._path, target)
            else:
                # Only ever held in memory (its save failed); archive the cached copy
                await self._write_json(target, record.to_dict())

            self._current = None
            self._generation += 1

        logger.info(f"Session {record.short_id} archived to {name}")
        await emit_if(self._bus, Event(
            type=EventType.SESSION_ARCHIVED,
            source="session",
            data={"session_id": record.session_id, "archive": name},
        ))
        return name

    # ── Persistence ───────────────────────────────────────────────────────────

    async def _load(self) -> SessionRecord | None:
        if self._current is not None:
            return self._current
        if not self._path.exists():
            return None
        try:
            async with aiofiles.open(self._path, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
            self._current = SessionRecord.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable session file {self._path}: {e}")
            return None
        return self._current

    async def _save(self, record: SessionRecord) -> None:
        await self._write_json(self._path, record.to_dict())

    async def _write_json(self, path: Path, data: dict) -> None:
        # Write-then-rename so readers never see a half-written file
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2) + "\n")
        await aiofiles.os.replace(tmp, path)
