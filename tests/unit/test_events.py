"""Tests for agentfleet.events."""

from __future__ import annotations

from agentfleet.events import EXIT, OUTPUT, STATUS, EventBus, FleetEvent


class TestEventBus:
    def test_emit_reaches_all_and_filtered_subscribers(self) -> None:
        bus = EventBus()
        everything: list[FleetEvent] = []
        statuses: list[FleetEvent] = []
        bus.subscribe(everything.append)
        bus.subscribe(statuses.append, STATUS)

        bus.emit(OUTPUT, "s1", data="hi")
        event = bus.emit(STATUS, "s1", status="waiting")

        assert [e.event_type for e in everything] == [OUTPUT, STATUS]
        assert statuses == [event]
        assert event.data == {"status": "waiting"}
        assert event.session_id == "s1"

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list[FleetEvent] = []
        unsubscribe = bus.subscribe(seen.append)
        bus.emit(EXIT, "s1", code=0)
        unsubscribe()
        bus.emit(EXIT, "s1", code=1)
        assert len(seen) == 1

    def test_failing_subscriber_does_not_block_others(self) -> None:
        bus = EventBus()
        seen: list[FleetEvent] = []

        def boom(event: FleetEvent) -> None:
            raise RuntimeError("subscriber bug")

        bus.subscribe(boom)
        bus.subscribe(seen.append)
        bus.emit(OUTPUT, "s1", data="x")
        assert len(seen) == 1

    def test_history_is_bounded(self) -> None:
        bus = EventBus(history_limit=3)
        for i in range(5):
            bus.emit(OUTPUT, "s1", data=str(i))
        assert [e.data["data"] for e in bus.history] == ["2", "3", "4"]

    def test_recent_by_type(self) -> None:
        bus = EventBus()
        bus.emit(OUTPUT, "s1", data="a")
        bus.emit(STATUS, "s1", status="running")
        bus.emit(OUTPUT, "s1", data="b")
        assert [e.data["data"] for e in bus.recent(1, OUTPUT)] == ["b"]
        assert len(bus.recent()) == 3
