#!/usr/bin/env python3
"""Test the event bus."""

from bastion.events import Event, EventBus, EventEmitter, EventType


def test_subscribe_by_type_and_wildcard():
    bus = EventBus()
    typed, everything = [], []
    bus.subscribe(EventType.STAGE_FAILED, typed.append)
    bus.subscribe(None, everything.append)

    emitter = EventEmitter("run-1", bus)
    emitter.stage_started("scan")
    emitter.stage_failed("scan", "gate failed")

    assert [e.type for e in typed] == [EventType.STAGE_FAILED]
    assert len(everything) == 2

    bus.unsubscribe(None, everything.append)
    emitter.stage_started("build")
    assert len(everything) == 2


def test_callback_errors_do_not_reach_publisher():
    bus = EventBus()

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(None, broken)
    bus.publish(Event(type=EventType.WARNING, run_id="run-1"))
    assert len(bus.get_history()) == 1


def test_history_is_bounded_and_clearable():
    bus = EventBus(max_history=3)
    for index in range(5):
        EventEmitter(f"run-{index % 2}", bus).stage_started(f"stage-{index}")

    history = bus.get_history()
    assert [e.data["stage"] for e in history] == ["stage-2", "stage-3", "stage-4"]

    bus.clear_history(run_id="run-0")
    assert [e.run_id for e in bus.get_history()] == ["run-1"]


def test_event_serialization():
    event = Event(type=EventType.DEPLOY_ATTEMPT, run_id="run-1", data={"attempt": 2})
    data = event.to_dict()
    assert data["type"] == "deploy_attempt"
    assert data["run_id"] == "run-1"
    assert '"attempt": 2' in event.to_json()
