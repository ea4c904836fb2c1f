"""
JobStore — SQLite persistence for scheduled jobs.

DB: <state_dir>/jobs.db

Table: jobs
    name       TEXT  PK
    schedule   TEXT
    prompt     TEXT
    recurring  INT   (0/1)
    created_at INT

Insertion order is rowid order. Every mutation commits before the call
returns: the scheduler loop and the status report read the table live.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from pathlib import Path

from cadence.core.bus import EventBus, emit_if
from cadence.core.errors import DuplicateJobError, InvalidScheduleError, StorageError
from cadence.core.events import Event, EventType
from cadence.schedule.expression import is_well_formed
from cadence.schedule.job import Job

logger = logging.getLogger(__name__)

_PLAIN_INT = re.compile(r"^\d+$")


class JobStore:
    """
    Thread-safe SQLite store for jobs.  All blocking ops run in executor.

    Usage:
        store = JobStore(db_path)
        await store.initialize()

        await store.add("standup", "0 9 * * 1-5", "Summarise yesterday's commits")
        jobs = await store.list()
        await store.remove("standup")
    """

    def __init__(self, db_path: Path, bus: EventBus | None = None) -> None:
        self._db_path = db_path
        self._bus = bus
        self._db: sqlite3.Connection | None = None
        # add() is check-then-insert; keep concurrent adds from interleaving
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._init_sync)

    def _init_sync(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            db = self._get_db()
            db.execute("PRAGMA journal_mode=WAL")
            db.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    name       TEXT PRIMARY KEY,
                    schedule   TEXT NOT NULL,
                    prompt     TEXT NOT NULL,
                    recurring  INTEGER NOT NULL DEFAULT 1,
                    created_at INTEGER NOT NULL
                )
            """)
            db.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open job store at {self._db_path}: {e}") from e
        logger.debug(f"JobStore initialised at {self._db_path}")

    def _get_db(self) -> sqlite3.Connection:
        if self._db is None:
            db = sqlite3.connect(str(self._db_path), check_same_thread=False)
            db.row_factory = sqlite3.Row
            self._db = db
        return self._db

    # ── Operations ───────────────────────────────────────────────────────────

    async def list(self) -> list[Job]:
        """All jobs in insertion order."""
        return await self._call(self._list_sync)

    def _list_sync(self) -> list[Job]:
        rows = self._get_db().execute("SELECT * FROM jobs ORDER BY rowid ASC").fetchall()
        return [self._row_to_job(r) for r in rows]

    async def get(self, name: str) -> Job | None:
        return await self._call(self._get_sync, name)

    def _get_sync(self, name: str) -> Job | None:
        row = self._get_db().execute("SELECT * FROM jobs WHERE name=?", (name,)).fetchone()
        return self._row_to_job(row) if row else None

    async def add(
        self,
        name: str,
        schedule: str,
        prompt: str,
        recurring: bool = True,
    ) -> Job:
        """
        Store a new job.

        Raises:
            InvalidScheduleError: schedule is not five whitespace-separated fields
            DuplicateJobError:    a job with this name already exists
        """
        if not is_well_formed(schedule):
            raise InvalidScheduleError(schedule)
        job = Job(name=name, schedule=" ".join(schedule.split()), prompt=prompt, recurring=recurring)
        async with self._write_lock:
            await self._call(self._insert_sync, job)
        logger.info(f"Job {name!r} added ({job.schedule}, recurring={recurring})")
        await emit_if(self._bus, Event(
            type=EventType.JOB_ADDED,
            source="jobs",
            data=job.to_dict(),
        ))
        return job

    def _insert_sync(self, job: Job) -> None:
        db = self._get_db()
        try:
            db.execute(
                """
                INSERT INTO jobs (name, schedule, prompt, recurring, created_at)
                VALUES (:name, :schedule, :prompt, :recurring, :created_at)
                """,
                {**job.to_dict(), "recurring": int(job.recurring)},
            )
            db.commit()
        except sqlite3.IntegrityError:
            db.rollback()
            raise DuplicateJobError(job.name)

    async def add_quick(self, schedule: str, prompt: str, recurring: bool = True) -> Job:
        """
        Add a job under a generated name.

        "30 9 * * *" becomes quick-0930; anything else takes quick-N with
        the first free N. Same errors as add().
        """
        if not is_well_formed(schedule):
            raise InvalidScheduleError(schedule)
        minute, hour = schedule.split()[:2]
        if _PLAIN_INT.match(minute) and _PLAIN_INT.match(hour):
            name = f"quick-{int(hour):02d}{int(minute):02d}"
        else:
            taken = {job.name for job in await self.list()}
            n = 1
            while f"quick-{n}" in taken:
                n += 1
            name = f"quick-{n}"
        return await self.add(name, schedule, prompt, recurring)

    async def remove(self, name: str) -> bool:
        """Delete a job. Missing names are not an error; returns whether a row went away."""
        async with self._write_lock:
            removed = await self._call(self._delete_sync, name)
        if removed:
            logger.info(f"Job {name!r} removed")
            await emit_if(self._bus, Event(
                type=EventType.JOB_REMOVED,
                source="jobs",
                data={"name": name},
            ))
        return removed

    def _delete_sync(self, name: str) -> bool:
        db = self._get_db()
        cur = db.execute("DELETE FROM jobs WHERE name=?", (name,))
        db.commit()
        return cur.rowcount > 0

    async def close(self) -> None:
        if self._db:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._db.close)
            self._db = None

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _call(self, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except sqlite3.Error as e:
            raise StorageError(f"Job store failure: {e}") from e

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        d = dict(row)
        d["recurring"] = bool(d["recurring"])
        return Job.from_dict(d)
