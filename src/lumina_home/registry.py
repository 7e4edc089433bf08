"""In-memory device registry.

Devices are frozen pydantic models. Every mutation builds an updated copy of
one record and swaps it into the registry, so a reader never sees a
half-applied change.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from lumina_home.const import LIGHT_VALUE_MAX, LIGHT_VALUE_MIN
from lumina_home.exceptions import DeviceNotFoundError, InvalidDeviceValueError
from lumina_home.logging_abstraction import get_logger
from lumina_home.structs import Device, DeviceKind, EnvironmentReading, SyncBinding

__all__ = [
    "KIND_POLICIES",
    "DeviceRegistry",
    "KindPolicy",
    "default_devices",
]

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class KindPolicy:
    """How a device kind treats its ``value``.

    ``power_follows_value``: setting a value also sets ``is_on = value > 0``.
    """

    value_range: tuple[float, float] | None = None
    power_follows_value: bool = False


KIND_POLICIES: dict[DeviceKind, KindPolicy] = {
    DeviceKind.LIGHT: KindPolicy(value_range=(LIGHT_VALUE_MIN, LIGHT_VALUE_MAX), power_follows_value=True),
    DeviceKind.DOOR: KindPolicy(),
    DeviceKind.AC: KindPolicy(),
    DeviceKind.SENSOR: KindPolicy(),
}


def default_devices() -> list[Device]:
    return [
        Device(id="l1", name="Living Room Light", kind=DeviceKind.LIGHT, is_on=True, value=255),
        Device(id="l2", name="Kitchen Light", kind=DeviceKind.LIGHT, is_on=False),
        Device(id="l3", name="Bedroom Light", kind=DeviceKind.LIGHT, is_on=False),
        Device(id="d1", name="Front Door Lock", kind=DeviceKind.DOOR, is_on=True),
        Device(id="d2", name="Garage Door", kind=DeviceKind.DOOR, is_on=True),
        Device(id="a1", name="Central AC", kind=DeviceKind.AC, is_on=False, value=24, unit="°C"),
    ]


class DeviceRegistry:
    """Canonical device and environment state for one home."""

    lp: str = "registry:"

    def __init__(
        self,
        devices: Iterable[Device] | None = None,
        environment: EnvironmentReading | None = None,
        binding: SyncBinding | None = None,
    ) -> None:
        seed = list(devices) if devices is not None else default_devices()
        self._devices: dict[str, Device] = {}
        for device in seed:
            if device.id in self._devices:
                msg = f"Duplicate device id in seed: {device.id}"
                raise ValueError(msg)
            self._check_value(device, device.value)
            self._devices[device.id] = device
        self._environment: EnvironmentReading = environment or EnvironmentReading()
        self.binding: SyncBinding = binding or SyncBinding()
        if self.binding.device_id not in self._devices:
            logger.warning(
                "%s synced device '%s' is not in the registry, cloud sync is inactive",
                self.lp,
                self.binding.device_id,
            )

    @classmethod
    def from_yaml(cls, path: str | Path, binding: SyncBinding | None = None) -> DeviceRegistry:
        """Build a registry from a seed file.

        Expected layout::

            devices:
              - {id: l1, name: Living Room Light, kind: LIGHT, is_on: true, value: 255}
            environment: {temperature: 23.5, humidity: 48, air_quality: Excellent}
        """
        lp = f"{cls.lp}from_yaml:"
        with Path(path).expanduser().open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            msg = f"Seed file {path} must contain a mapping"
            raise ValueError(msg)

        devices: list[Device] = []
        for item in raw.get("devices") or []:
            try:
                devices.append(Device.model_validate(item))
            except ValidationError:
                logger.exception("%s skipping invalid device entry: %s", lp, item)
        environment = EnvironmentReading.model_validate(raw["environment"]) if raw.get("environment") else None
        logger.info("%s loaded %d device(s) from %s", lp, len(devices), path)
        return cls(devices=devices, environment=environment, binding=binding)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    @property
    def environment(self) -> EnvironmentReading:
        return self._environment

    def get(self, device_id: str) -> Device:
        try:
            return self._devices[device_id]
        except KeyError:
            raise DeviceNotFoundError(device_id) from None

    def devices(self) -> list[Device]:
        """Snapshot of every device in seed order."""
        return list(self._devices.values())

    def by_kind(self, kind: DeviceKind) -> list[Device]:
        return [d for d in self._devices.values() if d.kind is kind]

    def is_synced(self, device_id: str) -> bool:
        return device_id == self.binding.device_id and device_id in self._devices

    @staticmethod
    def policy_for(device: Device) -> KindPolicy:
        return KIND_POLICIES.get(device.kind, KindPolicy())

    def _check_value(self, device: Device, value: float | None) -> None:
        if value is None:
            return
        if not math.isfinite(value):
            raise InvalidDeviceValueError(device.id, value)
        value_range = self.policy_for(device).value_range
        if value_range is None:
            return
        lo, hi = value_range
        if not lo <= value <= hi:
            raise InvalidDeviceValueError(device.id, value, value_range)

    def _replace(self, device: Device, **changes: object) -> Device:
        updated = device.model_copy(update=changes)
        self._devices[device.id] = updated
        logger.debug("%s %s -> is_on=%s value=%s", self.lp, device.id, updated.is_on, updated.value)
        return updated

    def set_power(self, device_id: str, is_on: bool) -> Device:
        return self._replace(self.get(device_id), is_on=is_on)

    def set_value(self, device_id: str, value: float) -> Device:
        """Set ``value``; kinds whose power follows value also get ``is_on = value > 0``.

        Raises:
            DeviceNotFoundError: unknown id
            InvalidDeviceValueError: value not finite or outside the kind's range; nothing is changed

        """
        device = self.get(device_id)
        self._check_value(device, value)
        changes: dict[str, object] = {"value": value}
        if self.policy_for(device).power_follows_value:
            changes["is_on"] = value > 0
        return self._replace(device, **changes)
