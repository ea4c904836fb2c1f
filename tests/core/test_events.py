"""Tests for the Event system."""

from cadence.core.events import Event, EventType


def test_event_creation():
    event = Event(type=EventType.RUN_COMPLETE, data={"exit_code": 0})

    assert event.type == "run:complete"
    assert event.data == {"exit_code": 0}
    assert event.id  # auto-generated
    assert event.timestamp > 0
    assert event.metadata == {}
    assert event.source == ""


def test_event_ids_unique():
    assert Event(type=EventType.RUN_QUEUED).id != Event(type=EventType.RUN_QUEUED).id


def test_event_type_constants():
    assert EventType.SYSTEM_START == "system:start"
    assert EventType.RUN_STARTED == "run:started"
    assert EventType.SESSION_DISCARDED == "session:discarded"
    assert EventType.JOB_FIRED == "job:fired"
    assert EventType.HEARTBEAT_FIRED == "heartbeat:fired"
    assert EventType.ALL == "*"
