"""Outbound property reports.

One call to :meth:`CommandPublisher.publish` produces one report on the
``properties/report`` topic. There is no batching and no retry queue: a report
that cannot be delivered is logged and dropped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from lumina_home.logging_abstraction import get_logger
from lumina_home.metrics import record_report
from lumina_home.structs import PropertyReport, ServiceProperties
from lumina_home.utils import event_time, is_number, normalize_number

if TYPE_CHECKING:
    from lumina_home.activity_log import ActivityLog
    from lumina_home.mqtt.session import BrokerSession

__all__ = ["CommandPublisher", "build_report"]

logger = get_logger(__name__)


def build_report(service_id: str, property_id: str, value: int | float) -> PropertyReport:
    return PropertyReport(
        services=[
            ServiceProperties(
                service_id=service_id,
                properties={property_id: normalize_number(value)},
                event_time=event_time(),
            )
        ]
    )


class CommandPublisher:
    """Serializes property values into reports and hands them to the broker session."""

    lp: str = "publisher:"

    def __init__(self, session: BrokerSession, activity_log: ActivityLog) -> None:
        self.session: BrokerSession = session
        self.activity_log: ActivityLog = activity_log

    async def publish(self, service_id: str, property_id: str, value: int | float) -> bool:
        """Report ``property_id = value`` for ``service_id``.

        Returns the transport result. Never raises for connectivity problems;
        ValueError is reserved for caller mistakes (empty ids, non-numeric value).
        """
        lp = f"{self.lp}publish:"
        if not service_id or not property_id:
            msg = f"service_id and property_id must be non-empty (got {service_id!r}, {property_id!r})"
            raise ValueError(msg)
        if not is_number(value):
            msg = f"Property value must be a number, got {value!r}"
            raise ValueError(msg)

        value = normalize_number(value)
        if not self.session.is_connected:
            logger.warning("%s not connected, skipping report of %s=%s", lp, property_id, value)
            record_report(property_id, "skipped")
            return False

        topic = self.session.config.report_topic
        payload = build_report(service_id, property_id, value).to_payload()
        logger.debug("%s topic=%s payload=%s", lp, topic, payload)
        if await self.session.publish(topic, payload, qos=1):
            record_report(property_id, "ok")
            self.activity_log.append(f"Reported {property_id}={value} to cloud")
            logger.info("%s reported %s.%s=%s", lp, service_id, property_id, value)
            return True

        record_report(property_id, "failed")
        self.activity_log.append(f"Failed to report {property_id}={value} to cloud")
        logger.warning("%s report of %s.%s=%s was not delivered", lp, service_id, property_id, value)
        return False
