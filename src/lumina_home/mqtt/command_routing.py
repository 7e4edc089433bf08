"""Inbound set-property routing.

Parses ``$oc/devices/{username}/sys/properties/set/request_id=...`` messages
and reconciles matching values into the device registry. Inbound updates are
never echoed back to the cloud.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from json import JSONDecodeError
from typing import TYPE_CHECKING, cast

from lumina_home.correlation import intent_context
from lumina_home.exceptions import DeviceNotFoundError, InvalidDeviceValueError
from lumina_home.logging_abstraction import get_logger
from lumina_home.metrics import record_inbound_command
from lumina_home.utils import is_number, normalize_number

if TYPE_CHECKING:
    from lumina_home.activity_log import ActivityLog
    from lumina_home.registry import DeviceRegistry
    from lumina_home.structs import BrokerConfig, Device

__all__ = ["InboundCommandHandler", "parse_request_id"]

logger = get_logger(__name__)

REQUEST_ID_PREFIX = "request_id="


def parse_request_id(topic: str) -> str | None:
    """Pull the ``request_id=<id>`` segment out of a set topic, if present."""
    for part in topic.split("/"):
        if part.startswith(REQUEST_ID_PREFIX):
            return part[len(REQUEST_ID_PREFIX) :] or None
    return None


def _service_entries(data: object) -> list[Mapping[str, object]]:
    """Accept ``{"services": [...]}`` or a bare ``{"service_id", "properties"}`` object."""
    if not isinstance(data, Mapping):
        return []
    data = cast("Mapping[str, object]", data)
    services = data.get("services")
    if isinstance(services, list):
        return [s for s in cast("list[object]", services) if isinstance(s, Mapping)]
    if "service_id" in data:
        return [data]
    return []


class InboundCommandHandler:
    """Message handler for the session: ``session.add_message_handler(handler)``."""

    lp: str = "inbound:"

    def __init__(self, registry: DeviceRegistry, config: BrokerConfig, activity_log: ActivityLog) -> None:
        self.registry: DeviceRegistry = registry
        self.config: BrokerConfig = config
        self.activity_log: ActivityLog = activity_log
        self._topic_prefix: str = config.set_topic.removesuffix("#")

    def __call__(self, topic: str, payload: bytes) -> list[Device]:
        return self.handle(topic, payload)

    def matches(self, topic: str) -> bool:
        return topic.startswith(self._topic_prefix) or topic == self._topic_prefix.rstrip("/")

    def handle(self, topic: str, payload: bytes) -> list[Device]:
        """Apply every matching entry of one set command; returns the updated devices."""
        lp = f"{self.lp}handle:"
        if not self.matches(topic):
            logger.debug("%s ignoring message on unrelated topic: %s", lp, topic)
            return []

        request_id = parse_request_id(topic)
        with intent_context("cloud", request_id):
            try:
                data = json.loads(payload)
            except (JSONDecodeError, UnicodeDecodeError):
                logger.warning("%s bad json message on %s: %r", lp, topic, payload[:200])
                record_inbound_command("ignored")
                return []

            entries = _service_entries(data)
            if not entries:
                logger.warning("%s set command without services, ignoring: %r", lp, payload[:200])
                record_inbound_command("ignored")
                return []

            updated: list[Device] = []
            for entry in entries:
                updated.extend(self._apply_service(entry, lp))
            return updated

    def apply_snapshot(self, properties: Mapping[str, object]) -> list[Device]:
        """Apply a cloud property snapshot for the bound service, e.g. ``{"dengguang": 125}``."""
        lp = f"{self.lp}snapshot:"
        with intent_context("cloud"):
            entry = {"service_id": self.registry.binding.service_id, "properties": properties}
            return self._apply_service(entry, lp)

    def _apply_service(self, entry: Mapping[str, object], lp: str) -> list[Device]:
        binding = self.registry.binding
        service_id = entry.get("service_id")
        properties = entry.get("properties")
        if not isinstance(properties, Mapping):
            logger.debug("%s service %s carries no properties, skipping...", lp, service_id)
            record_inbound_command("ignored")
            return []

        updated: list[Device] = []
        for property_id, value in cast("Mapping[str, object]", properties).items():
            if service_id != binding.service_id or property_id != binding.property_id:
                logger.debug("%s unknown property %s.%s, skipping...", lp, service_id, property_id)
                record_inbound_command("ignored")
                continue
            if not is_number(value):
                logger.warning("%s non-numeric value for %s: %r, skipping...", lp, property_id, value)
                record_inbound_command("ignored")
                continue

            number = normalize_number(cast("int | float", value))
            try:
                device = self.registry.set_value(binding.device_id, number)
            except (DeviceNotFoundError, InvalidDeviceValueError) as exc:
                logger.warning("%s cannot apply %s=%s -> %s", lp, property_id, number, exc)
                record_inbound_command("ignored")
                continue

            record_inbound_command("applied")
            self.activity_log.append(f"Cloud set {device.name} {property_id}={number}")
            logger.info("%s applied %s=%s to %s (is_on=%s)", lp, property_id, number, device.id, device.is_on)
            updated.append(device)
        return updated
