"""Bounded, newest-first trail of connection and command events."""

from __future__ import annotations

from collections import deque
from datetime import datetime

from lumina_home.const import ACTIVITY_LOG_MAX_ENTRIES, LOCAL_TZ
from lumina_home.structs import ActivityEntry, ConnectionStatus

__all__ = ["ActivityLog"]

_STATUS_MESSAGES: dict[ConnectionStatus, str] = {
    ConnectionStatus.CONNECTING: "Connecting to IoT broker...",
    ConnectionStatus.CONNECTED: "Connected to IoT broker",
    ConnectionStatus.ERROR: "IoT broker connection error",
    ConnectionStatus.DISCONNECTED: "IoT broker connection closed",
}


class ActivityLog:
    """In-memory activity log; appending past ``max_entries`` drops the oldest."""

    def __init__(self, max_entries: int = ACTIVITY_LOG_MAX_ENTRIES) -> None:
        if max_entries < 1:
            msg = f"max_entries must be positive, got {max_entries}"
            raise ValueError(msg)
        self.max_entries: int = max_entries
        self._entries: deque[ActivityEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, message: str) -> ActivityEntry:
        entry = ActivityEntry(timestamp=datetime.now(LOCAL_TZ), message=message)
        # deque(maxlen) evicts from the right end, which holds the oldest entry
        self._entries.appendleft(entry)
        return entry

    def entries(self) -> list[ActivityEntry]:
        """Snapshot of the log, newest first."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def record_status(self, status: ConnectionStatus) -> None:
        """Status listener for :class:`~lumina_home.mqtt.session.BrokerSession`."""
        self.append(_STATUS_MESSAGES.get(status, f"IoT broker status: {status}"))
