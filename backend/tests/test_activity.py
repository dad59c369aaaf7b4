"""Tests for the activity log."""

import logging

from forwarder_core.activity import MAX_ENTRIES, ActivityRecorder
from forwarder_core.models import LogLevel


class TestActivityRecorder:
    """Tests for ActivityRecorder."""

    def test_append_returns_entry(self):
        activity = ActivityRecorder()
        entry = activity.append(LogLevel.DETECTION, "TRX PAYMENT DETECTED!", {"amount": "50 TRX"})

        assert entry.level == LogLevel.DETECTION
        assert entry.details == {"amount": "50 TRX"}
        assert entry.timestamp.tzinfo is not None
        assert len(activity) == 1

    def test_unique_ids(self):
        activity = ActivityRecorder()
        ids = {activity.info(f"entry {i}").id for i in range(10)}
        assert len(ids) == 10

    def test_most_recent_first(self):
        activity = ActivityRecorder()
        activity.info("first")
        activity.info("second")
        activity.info("third")

        assert [e.message for e in activity.list()] == ["third", "second", "first"]
        assert [e.message for e in activity.list(limit=2)] == ["third", "second"]

    def test_capped_oldest_evicted(self):
        activity = ActivityRecorder()
        for i in range(MAX_ENTRIES + 5):
            activity.info(f"entry {i}")

        entries = activity.list()
        assert len(entries) == MAX_ENTRIES
        assert entries[0].message == f"entry {MAX_ENTRIES + 4}"
        assert entries[-1].message == "entry 5"

    def test_clear(self):
        activity = ActivityRecorder()
        activity.info("something")
        activity.clear()

        assert activity.list() == []
        assert len(activity) == 0

    def test_level_shortcuts(self):
        activity = ActivityRecorder()
        activity.info("i")
        activity.success("s")
        activity.warning("w")
        activity.error("e")

        levels = [e.level for e in reversed(activity.list())]
        assert levels == [LogLevel.INFO, LogLevel.SUCCESS, LogLevel.WARNING, LogLevel.ERROR]

    def test_notification_levels(self):
        activity = ActivityRecorder()
        assert activity.error("boom").is_notification
        assert activity.success("done").is_notification
        assert activity.append(LogLevel.DETECTION, "deposit").is_notification
        assert not activity.info("tick").is_notification
        assert not activity.append(LogLevel.SIGNATURE, "signed").is_notification

    def test_listeners_receive_entries(self):
        activity = ActivityRecorder()
        received = []
        activity.subscribe(received.append)
        activity.subscribe(received.append)  # duplicate ignored

        entry = activity.info("hello")

        assert received == [entry]

        activity.unsubscribe(received.append)
        activity.info("ignored")
        assert received == [entry]

    def test_failing_listener_does_not_break_append(self):
        activity = ActivityRecorder()

        def broken(entry):
            raise RuntimeError("listener down")

        received = []
        activity.subscribe(broken)
        activity.subscribe(received.append)

        activity.info("still recorded")

        assert len(activity) == 1
        assert len(received) == 1

    def test_mirrored_to_logger(self, caplog):
        activity = ActivityRecorder()
        with caplog.at_level(logging.INFO, logger="forwarder_core.activity"):
            activity.warning("Insufficient balance after fee reserve")

        assert "Insufficient balance after fee reserve" in caplog.text
