"""Exception hierarchy for the Lumina controller."""

from __future__ import annotations

__all__ = [
    "AssistantUnavailableError",
    "DeviceNotFoundError",
    "InvalidDeviceValueError",
    "LuminaError",
    "VoiceUnavailableError",
]


class LuminaError(Exception):
    """Base class for controller errors."""


class DeviceNotFoundError(LuminaError, KeyError):
    """Raised when an intent names a device id that is not in the registry."""

    def __init__(self, device_id: str) -> None:
        self.device_id: str = device_id
        super().__init__(f"Device not found: {device_id}")

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return f"Device not found: {self.device_id}"


class InvalidDeviceValueError(LuminaError, ValueError):
    """Raised when a value is not finite or falls outside the range allowed for a device kind."""

    def __init__(self, device_id: str, value: float, value_range: tuple[float, float] | None = None) -> None:
        self.device_id: str = device_id
        self.value: float = value
        self.value_range: tuple[float, float] | None = value_range
        if value_range is None:
            super().__init__(f"Value {value} for device {device_id} is not a finite number")
            return
        lo, hi = value_range
        super().__init__(f"Value {value} for device {device_id} is outside [{lo}, {hi}]")


class AssistantUnavailableError(LuminaError):
    """The hosted assistant could not be reached or is not configured."""


class VoiceUnavailableError(LuminaError):
    """No speech-to-text capability is available on this host."""
