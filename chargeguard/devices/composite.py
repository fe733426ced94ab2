"""Several physical batteries presented as one logical device."""

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

from chargeguard.core.device import BatteryDevice
from chargeguard.core.types import DeviceKind, ThresholdPair

log = logging.getLogger(__name__)


class CompositeBattery(BatteryDevice):
    """Aggregates ready devices, ordered by battery name.

    The first member is the primary: its thresholds are reported and its
    result decides the outcome of a threshold write. For force discharge
    the primary is the first member that supports it. Writes fan out to
    every member concurrently; failures of the other members are reported
    through ``partial_failure`` instead of the return value.

    The composite owns its members and destroys them with itself.
    """

    def __init__(self, devices: Sequence[BatteryDevice]):
        super().__init__()
        if not devices:
            raise ValueError("CompositeBattery needs at least one device")
        self._devices: List[BatteryDevice] = list(devices)
        self._handlers: List[Tuple[BatteryDevice, int, int]] = []

        for device in self._devices:
            threshold_id = device.threshold_changed.connect(
                lambda start, end, dev=device: self._on_member_thresholds(dev, start, end))
            discharge_id = device.force_discharge_changed.connect(
                lambda enabled, dev=device: self._on_member_force_discharge(dev, enabled))
            self._handlers.append((device, threshold_id, discharge_id))

    @property
    def devices(self) -> List[BatteryDevice]:
        return list(self._devices)

    # --- Identity and capabilities ---

    @property
    def kind(self) -> DeviceKind:
        return DeviceKind.COMPOSITE

    @property
    def name(self) -> str:
        return f"Composite device ({len(self._devices)} batteries)"

    @property
    def battery_name(self) -> str:
        return self._devices[0].battery_name if self._devices else "BAT0"

    @property
    def primary(self) -> Optional[BatteryDevice]:
        return self._devices[0] if self._devices else None

    @property
    def discharge_primary(self) -> Optional[BatteryDevice]:
        """First member, in name order, that supports force discharge."""
        for device in self._devices:
            if device.supports_force_discharge:
                return device
        return None

    @property
    def supports_force_discharge(self) -> bool:
        return any(d.supports_force_discharge for d in self._devices)

    @property
    def has_start_threshold(self) -> bool:
        return self.primary is not None and self.primary.has_start_threshold

    @property
    def needs_helper(self) -> bool:
        # One member without the helper makes the whole aggregate read-only.
        return any(d.needs_helper for d in self._devices)

    # --- Operations ---

    async def initialize(self) -> bool:
        # Members are initialized before the composite is built.
        return bool(self._devices) and not self.destroyed

    def get_thresholds(self) -> ThresholdPair:
        if not self._devices:
            return ThresholdPair()
        return self._devices[0].get_thresholds()

    async def set_thresholds(self, start: int, end: int) -> bool:
        if self.destroyed or not self._devices:
            return False
        targets = list(self._devices)
        results = await self._fan_out(targets, lambda d: d.set_thresholds(start, end))
        if self.destroyed:
            return False
        self._report_partial_failure(targets, results)
        return results[0]

    def get_force_discharge(self) -> bool:
        device = self.discharge_primary
        return device.get_force_discharge() if device is not None else False

    async def set_force_discharge(self, enabled: bool) -> bool:
        if self.destroyed:
            return False
        targets = [d for d in self._devices if d.supports_force_discharge]
        if not targets:
            log.debug("No member of %s supports force discharge", self.name)
            return False
        results = await self._fan_out(targets, lambda d: d.set_force_discharge(enabled))
        if self.destroyed:
            return False
        self._report_partial_failure(targets, results)
        return results[0]

    def get_battery_level(self) -> int:
        if not self._devices:
            return 0
        levels = [d.get_battery_level() for d in self._devices]
        return round(sum(levels) / len(levels))

    def get_health(self) -> Optional[int]:
        healths = [h for h in (d.get_health() for d in self._devices) if h is not None]
        if not healths:
            return None
        return round(sum(healths) / len(healths))

    async def refresh_values(self) -> None:
        if self.destroyed:
            return
        await self._fan_out(list(self._devices), lambda d: d.refresh_values())

    def destroy(self) -> None:
        if self.destroyed:
            return
        self._end_lifetime()
        for device, threshold_id, discharge_id in self._handlers:
            device.threshold_changed.disconnect(threshold_id)
            device.force_discharge_changed.disconnect(discharge_id)
        self._handlers = []
        for device in self._devices:
            device.destroy()
        self._devices = []

    # --- Internal ---

    async def _fan_out(self, targets, call) -> List[bool]:
        """Run ``call`` on every target concurrently; never fail fast."""
        outcomes = await asyncio.gather(*(call(d) for d in targets),
                                        return_exceptions=True)
        results = []
        for device, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                log.error("Operation on %s failed", device.battery_name, exc_info=outcome)
                results.append(False)
            else:
                results.append(bool(outcome))
        return results

    def _report_partial_failure(self, targets, results) -> None:
        failed = [d.battery_name for d, ok in zip(targets[1:], results[1:]) if not ok]
        if failed:
            primary_name = targets[0].battery_name
            failed_names = ", ".join(failed)
            log.warning("Operation applied to %s but failed on %s", primary_name, failed_names)
            self._emit_partial_failure(primary_name, failed_names)

    def _on_member_thresholds(self, device: BatteryDevice, start: int, end: int) -> None:
        # Members are kept in sync by the fan-out, so only the primary is forwarded.
        if self._devices and device is self._devices[0]:
            self._emit_thresholds(ThresholdPair(start, end))

    def _on_member_force_discharge(self, device: BatteryDevice, enabled: bool) -> None:
        if device is self.discharge_primary:
            self._emit_force_discharge(enabled)
