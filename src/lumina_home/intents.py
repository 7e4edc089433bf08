"""User intents: the only way the dashboard and the assistant change device state.

The local registry is updated synchronously; when the device is the cloud-bound
one, a report is dispatched in the background. A report that fails is logged
but the local change is kept.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TYPE_CHECKING

from lumina_home.const import DEFAULT_INTENSITY
from lumina_home.correlation import get_intent_id, intent_context
from lumina_home.logging_abstraction import get_logger
from lumina_home.structs import Device, DeviceKind

if TYPE_CHECKING:
    from lumina_home.mqtt.publisher import CommandPublisher
    from lumina_home.registry import DeviceRegistry

__all__ = ["IntentRouter"]

logger = get_logger(__name__)


class IntentRouter:
    lp: str = "intents:"

    def __init__(self, registry: DeviceRegistry, publisher: CommandPublisher) -> None:
        self.registry: DeviceRegistry = registry
        self.publisher: CommandPublisher = publisher
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def toggle(self, device_id: str, should_sync: bool = True, *, source: str = "ui") -> Device:
        """Flip ``is_on``.

        For the bound device with ``should_sync`` the new state is reported: the
        current intensity (255 when it has none) when switching on, 0 when
        switching off.
        """
        lp = f"{self.lp}toggle:"
        with intent_context(source):
            previous = self.registry.get(device_id)
            device = self.registry.set_power(device_id, not previous.is_on)
            logger.info("%s %s (%s) is_on: %s -> %s", lp, device.name, device.id, previous.is_on, device.is_on)
            if should_sync and self.registry.is_synced(device_id):
                report_value = (previous.value or DEFAULT_INTENSITY) if device.is_on else 0
                self._report(report_value)
            return device

    def set_intensity(self, device_id: str, value: int | float, *, source: str = "ui") -> Device:
        """Set the value; lights also switch on or off with it. The bound device always reports."""
        lp = f"{self.lp}set_intensity:"
        with intent_context(source):
            device = self.registry.set_value(device_id, value)
            logger.info("%s %s (%s) value=%s is_on=%s", lp, device.name, device.id, device.value, device.is_on)
            if self.registry.is_synced(device_id):
                self._report(value)
            return device

    def set_temperature_target(self, value: int | float, *, source: str = "ui") -> list[Device]:
        """Set the target temperature of every AC. Local only."""
        lp = f"{self.lp}set_temperature_target:"
        with intent_context(source):
            updated = [self.registry.set_value(ac.id, value) for ac in self.registry.by_kind(DeviceKind.AC)]
            logger.info("%s target=%s applied to %d AC device(s)", lp, value, len(updated))
            return updated

    def _report(self, value: int | float) -> None:
        binding = self.registry.binding
        self._dispatch(self.publisher.publish(binding.service_id, binding.property_id, value))

    def _dispatch(self, coro: Coroutine[object, object, bool]) -> None:
        lp = f"{self.lp}dispatch:"
        task = asyncio.create_task(coro, name=f"report-{get_intent_id()}")
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        logger.debug("%s report task %s scheduled", lp, task.get_name())

    def _task_done(self, task: asyncio.Task[bool]) -> None:
        lp = f"{self.lp}task_done:"
        self._pending.discard(task)
        if task.cancelled():
            logger.debug("%s report task %s cancelled", lp, task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s report task %s failed: %s", lp, task.get_name(), exc)

    async def drain(self) -> None:
        """Wait for every report dispatched so far."""
        if self._pending:
            _ = await asyncio.gather(*self._pending, return_exceptions=True)
