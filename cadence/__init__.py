"""
Cadence — scheduled and on-demand runs against one long-lived agent session.

Public API:
    from cadence import Daemon, CadenceConfig, ExecutionQueue, JobStore
"""

__version__ = "0.1.0"

# Core
from cadence.core.config import CadenceConfig
from cadence.core.events import Event, EventType

# Scheduling
from cadence.schedule.expression import matches, next_fire_after
from cadence.schedule.job import Job
from cadence.schedule.store import JobStore

# Execution
from cadence.runner.queue import ExecutionQueue, RunResult
from cadence.runner.session import SessionState

from cadence.daemon import Daemon

__all__ = [
    # Core
    "CadenceConfig",
    "Event",
    "EventType",
    # Scheduling
    "matches",
    "next_fire_after",
    "Job",
    "JobStore",
    # Execution
    "ExecutionQueue",
    "RunResult",
    "SessionState",
    "Daemon",
]
