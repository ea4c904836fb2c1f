"""
Scheduled Job — the core data model.

A Job is a named prompt plus the five-field expression that decides when
it fires. Recurring jobs stay in the store until deleted; one-shot jobs
are removed by the scheduler loop as soon as they have been enqueued.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class Job:
    """A scheduled task."""

    name: str            # unique, stable while the job exists
    schedule: str        # five-field expression, e.g. "0 9 * * 1-5"
    prompt: str          # what to send to the agent when this fires
    recurring: bool = True
    created_at: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "schedule": self.schedule,
            "prompt": self.prompt,
            "recurring": self.recurring,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Job":
        return cls(
            name=d["name"],
            schedule=d["schedule"],
            prompt=d["prompt"],
            recurring=bool(d.get("recurring", True)),
            created_at=int(d.get("created_at") or 0),
        )
