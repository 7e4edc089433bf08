"""
Unit tests for ActivityLog.
"""

import pytest

from lumina_home.activity_log import ActivityLog
from lumina_home.structs import ConnectionStatus


class TestActivityLog:
    def test_newest_first(self, activity_log):
        _ = activity_log.append("one")
        _ = activity_log.append("two")

        assert [e.message for e in activity_log.entries()] == ["two", "one"]

    def test_bounded_to_fifty(self, activity_log):
        """Appending 60 entries keeps the 50 newest"""
        for i in range(60):
            _ = activity_log.append(f"entry {i}")

        entries = activity_log.entries()
        assert len(entries) == 50
        assert entries[0].message == "entry 59"
        assert entries[-1].message == "entry 10"

    def test_entries_is_a_snapshot(self, activity_log):
        _ = activity_log.append("one")
        snapshot = activity_log.entries()
        _ = activity_log.append("two")

        assert len(snapshot) == 1

    def test_timestamps_are_aware(self, activity_log):
        entry = activity_log.append("one")
        assert entry.timestamp.tzinfo is not None

    def test_clear(self, activity_log):
        _ = activity_log.append("one")
        activity_log.clear()

        assert len(activity_log) == 0

    def test_custom_capacity(self):
        log = ActivityLog(max_entries=2)
        for message in ("a", "b", "c"):
            _ = log.append(message)

        assert [e.message for e in log.entries()] == ["c", "b"]

    def test_invalid_capacity(self):
        with pytest.raises(ValueError, match="positive"):
            _ = ActivityLog(max_entries=0)

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (ConnectionStatus.CONNECTED, "Connected to IoT broker"),
            (ConnectionStatus.ERROR, "IoT broker connection error"),
            (ConnectionStatus.DISCONNECTED, "IoT broker connection closed"),
            (ConnectionStatus.CONNECTING, "Connecting to IoT broker..."),
        ],
    )
    def test_record_status(self, activity_log, status, expected):
        activity_log.record_status(status)

        assert activity_log.entries()[0].message == expected
