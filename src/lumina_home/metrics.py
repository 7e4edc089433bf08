"""Prometheus metrics for broker traffic and connection state."""

from typing import Final

from prometheus_client import Counter, Gauge  # type: ignore[import-untyped]

from lumina_home.structs import ConnectionStatus

__all__ = [
    "record_connection_state",
    "record_inbound_command",
    "record_reconnect_attempt",
    "record_report",
]

lumina_report_total: Final = Counter(  # type: ignore[assignment]
    "lumina_report_total",
    "Property reports handed to the broker",
    ["property_id", "outcome"],
)

lumina_inbound_command_total: Final = Counter(  # type: ignore[assignment]
    "lumina_inbound_command_total",
    "Inbound set-property entries",
    ["outcome"],
)

lumina_connection_state: Final = Gauge(  # type: ignore[assignment]
    "lumina_connection_state",
    "Current broker connection state (1 for the active state)",
    ["state"],
)

lumina_reconnect_attempts_total: Final = Counter(  # type: ignore[assignment]
    "lumina_reconnect_attempts_total",
    "Broker connection attempts after the first",
)


def record_report(property_id: str, outcome: str) -> None:
    """Record a report outcome: ``ok``, ``failed`` or ``skipped``."""
    lumina_report_total.labels(property_id=property_id, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_inbound_command(outcome: str) -> None:
    """Record an inbound entry outcome: ``applied`` or ``ignored``."""
    lumina_inbound_command_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_connection_state(status: ConnectionStatus) -> None:
    # Set gauge to 1 for current state, 0 for all others
    for s in ConnectionStatus:
        lumina_connection_state.labels(state=s.value).set(1 if s is status else 0)  # type: ignore[no-untyped-call]


def record_reconnect_attempt() -> None:
    lumina_reconnect_attempts_total.inc()  # type: ignore[no-untyped-call]
