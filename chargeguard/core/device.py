"""Capability contract shared by every battery device implementation."""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from chargeguard.core.signals import Signal
from chargeguard.core.types import DeviceKind, ThresholdPair


class Lifetime:
    """Sticky destroyed flag with delays that wake up early when it ends."""

    def __init__(self):
        self._ended = False
        self._event: Optional[asyncio.Event] = None

    @property
    def ended(self) -> bool:
        return self._ended

    def end(self) -> None:
        self._ended = True
        if self._event is not None:
            self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Wait for ``seconds``. Returns False if the lifetime ended meanwhile."""
        if self._ended:
            return False
        if self._event is None:
            self._event = asyncio.Event()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return not self._ended
        return False


class BatteryDevice(ABC):
    """A controllable battery, either physical or an aggregate of several.

    Notifications are exposed as Signal attributes:
        threshold_changed(start, end)
        force_discharge_changed(enabled)
        partial_failure(primary_name, failed_names)

    No notification is ever emitted once destroy() has been called.
    """

    def __init__(self):
        self.threshold_changed = Signal("threshold-changed")
        self.force_discharge_changed = Signal("force-discharge-changed")
        self.partial_failure = Signal("partial-failure")
        self._lifetime = Lifetime()

    # --- Identity ---

    @property
    @abstractmethod
    def kind(self) -> DeviceKind:
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name (e.g., 'Sysfs battery (BAT0)')."""
        ...

    @property
    @abstractmethod
    def battery_name(self) -> str:
        """Kernel name of the (primary) battery, e.g. 'BAT0'."""
        ...

    # --- Capabilities ---

    @property
    @abstractmethod
    def supports_force_discharge(self) -> bool:
        ...

    @property
    @abstractmethod
    def has_start_threshold(self) -> bool:
        ...

    @property
    @abstractmethod
    def needs_helper(self) -> bool:
        """True when writes are impossible because the helper is missing."""
        ...

    # --- Operations ---

    @abstractmethod
    async def initialize(self) -> bool:
        """Probe the hardware. The device is ready only after this returns True."""
        ...

    @abstractmethod
    def get_thresholds(self) -> ThresholdPair:
        ...

    @abstractmethod
    async def set_thresholds(self, start: int, end: int) -> bool:
        ...

    @abstractmethod
    def get_force_discharge(self) -> bool:
        ...

    @abstractmethod
    async def set_force_discharge(self, enabled: bool) -> bool:
        ...

    @abstractmethod
    def get_battery_level(self) -> int:
        ...

    @abstractmethod
    def get_health(self) -> Optional[int]:
        """Health in percent, or None when it cannot be determined."""
        ...

    @abstractmethod
    async def refresh_values(self) -> None:
        """Resynchronize cached state from the underlying source."""
        ...

    @abstractmethod
    def destroy(self) -> None:
        ...

    # --- Shared plumbing ---

    @property
    def destroyed(self) -> bool:
        return self._lifetime.ended

    def _end_lifetime(self) -> None:
        self._lifetime.end()
        self.threshold_changed.disconnect_all()
        self.force_discharge_changed.disconnect_all()
        self.partial_failure.disconnect_all()

    def _emit_thresholds(self, pair: ThresholdPair) -> None:
        if not self.destroyed:
            self.threshold_changed.emit(pair.start, pair.end)

    def _emit_force_discharge(self, enabled: bool) -> None:
        if not self.destroyed:
            self.force_discharge_changed.emit(enabled)

    def _emit_partial_failure(self, primary_name: str, failed_names: str) -> None:
        if not self.destroyed:
            self.partial_failure.emit(primary_name, failed_names)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
