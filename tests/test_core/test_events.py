"""Tests for the event broadcaster."""

from __future__ import annotations

import pytest

from credfix.core.events import SCAN_COMPLETE, SCAN_PROGRESS, SCAN_START, EventBroadcaster


class TestEventBroadcaster:
    def test_emit_shape(self):
        events = EventBroadcaster()
        event = events.emit(SCAN_START, "abc", 0, message="Scanning")
        assert event["type"] == "scan-start"
        assert event["sessionId"] == "abc"
        assert event["progress"] == 0
        assert event["message"] == "Scanning"
        assert event["timestamp"].endswith("Z")
        assert "result" not in event

    def test_result_replaces_message(self):
        event = EventBroadcaster().emit(SCAN_COMPLETE, "abc", 100, result={"issues": 0})
        assert event["result"] == {"issues": 0}
        assert "message" not in event

    def test_progress_clamped(self):
        events = EventBroadcaster()
        assert events.emit(SCAN_PROGRESS, "a", 150)["progress"] == 100
        assert events.emit(SCAN_PROGRESS, "a", -5)["progress"] == 0

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            EventBroadcaster().emit("scan-exploded", "a", 0)

    def test_subscribe_and_unsubscribe(self):
        events = EventBroadcaster()
        seen = []
        unsubscribe = events.subscribe(seen.append)
        events.emit(SCAN_START, "a", 0)
        unsubscribe()
        events.emit(SCAN_PROGRESS, "a", 50)
        assert [e["type"] for e in seen] == ["scan-start"]

    def test_failing_listener_does_not_break_emit(self):
        events = EventBroadcaster()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        events.subscribe(broken)
        events.subscribe(seen.append)
        events.emit(SCAN_START, "a", 0)
        assert len(seen) == 1

    def test_since_filters_by_session(self):
        events = EventBroadcaster()
        events.emit(SCAN_START, "a", 0)
        events.emit(SCAN_START, "b", 0)
        events.emit(SCAN_COMPLETE, "a", 100, result={})
        assert [e["type"] for e in events.since("a")] == ["scan-start", "scan-complete"]

    def test_history_is_bounded(self):
        events = EventBroadcaster(history=3)
        for n in range(5):
            events.emit(SCAN_PROGRESS, "a", n)
        assert [e["progress"] for e in events.events] == [2, 3, 4]
