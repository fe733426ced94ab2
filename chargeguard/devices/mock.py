"""In-memory battery for development without charge-control hardware."""

import logging
from typing import Optional

from chargeguard.core.device import BatteryDevice
from chargeguard.core.types import DeviceKind, ThresholdPair

log = logging.getLogger(__name__)


class MockBattery(BatteryDevice):
    """Accepts every valid write immediately. Enabled by the ``use_mock`` marker."""

    def __init__(self, start: int = 60, end: int = 80, level: int = 50,
                 health: Optional[int] = 95, battery_name: str = "MOCK0"):
        super().__init__()
        self._battery_name = battery_name
        self._thresholds = ThresholdPair(start, end)
        self._battery_level = level
        self._health = health
        self._force_discharge_enabled = False

    @property
    def kind(self) -> DeviceKind:
        return DeviceKind.MOCK

    @property
    def name(self) -> str:
        return "Mock battery"

    @property
    def battery_name(self) -> str:
        return self._battery_name

    @property
    def supports_force_discharge(self) -> bool:
        return True

    @property
    def has_start_threshold(self) -> bool:
        return True

    @property
    def needs_helper(self) -> bool:
        return False

    async def initialize(self) -> bool:
        log.info("Initializing mock battery")
        return not self.destroyed

    def get_thresholds(self) -> ThresholdPair:
        return self._thresholds

    async def set_thresholds(self, start: int, end: int) -> bool:
        if self.destroyed:
            return False
        log.debug("Mock battery: setting thresholds to %s-%s", start, end)
        if not (0 <= start < end <= 100):
            log.debug("Mock battery: invalid thresholds")
            return False
        self._thresholds = ThresholdPair(start, end)
        self._emit_thresholds(self._thresholds)
        return True

    def get_force_discharge(self) -> bool:
        return self._force_discharge_enabled

    async def set_force_discharge(self, enabled: bool) -> bool:
        if self.destroyed:
            return False
        self._force_discharge_enabled = bool(enabled)
        self._emit_force_discharge(self._force_discharge_enabled)
        return True

    def get_battery_level(self) -> int:
        return self._battery_level

    def get_health(self) -> Optional[int]:
        return self._health

    async def refresh_values(self) -> None:
        pass

    def destroy(self) -> None:
        self._end_lifetime()

    def simulate_external_change(self, start: int, end: int) -> None:
        """Pretend another tool rewrote the thresholds."""
        self._thresholds = ThresholdPair(start, end)
        self._emit_thresholds(self._thresholds)
