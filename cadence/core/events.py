"""
Cadence Event System — types and constants.

Runs, sessions, jobs and the heartbeat all announce what they did.
Events flow through the middleware chain, then to subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import time
import uuid


class EventType:
    """
    Event type constants.

    Hierarchical naming: "category:action"
    Supports wildcard matching: "run:*" matches "run:started"
    """

    # Daemon lifecycle
    SYSTEM_START = "system:start"
    SYSTEM_STOP = "system:stop"

    # Execution queue
    RUN_QUEUED = "run:queued"
    RUN_STARTED = "run:started"
    RUN_COMPLETE = "run:complete"

    # Session state
    SESSION_CREATED = "session:created"
    SESSION_RESET = "session:reset"
    SESSION_ARCHIVED = "session:archived"
    SESSION_DISCARDED = "session:discarded"

    # Job store / scheduler
    JOB_ADDED = "job:added"
    JOB_REMOVED = "job:removed"
    JOB_FIRED = "job:fired"

    # Heartbeat
    HEARTBEAT_FIRED = "heartbeat:fired"

    # Wildcard
    ALL = "*"


@dataclass(slots=True)
class Event:
    """
    A single event in the Cadence system.

    - Typed (hierarchical string)
    - Timestamped
    - Traceable (source names the component or run that emitted it)
    - Extensible (data dict for event-specific payload)
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)
