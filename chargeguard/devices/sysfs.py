"""Single-battery controller backed by /sys/class/power_supply/<BAT>."""

import asyncio
import logging
from contextlib import nullcontext
from pathlib import Path
from typing import Callable, Optional, Sequence, Set, Tuple

from chargeguard.core.device import BatteryDevice
from chargeguard.core.types import CommandResult, DeviceKind, ExitStatus, ThresholdPair
from chargeguard.helper import (
    HelperRunner,
    end_command,
    end_start_command,
    force_discharge_command,
    start_end_command,
    validate_battery_name,
    validate_force_discharge_mode,
    validate_threshold,
)
from chargeguard.monitor import AttributeMonitor, udev_monitor_factory
from chargeguard.sysfs import (
    BEHAVIOUR_FILE,
    CAPACITY_FILE,
    CHARGE_FULL_DESIGN_FILE,
    CHARGE_FULL_FILE,
    ENERGY_FULL_DESIGN_FILE,
    ENERGY_FULL_FILE,
    MODE_AUTO,
    MODE_FORCE_DISCHARGE,
    THRESHOLD_END_FILES,
    THRESHOLD_START_FILES,
    find_first,
    is_force_discharge_active,
    read_attr,
    read_attr_int,
    run_blocking,
)

log = logging.getLogger(__name__)

# Backoff between force-discharge verification reads, in seconds.
FORCE_DISCHARGE_VERIFY_DELAYS = (0.05, 0.1, 0.2, 0.4, 0.8, 1.6)

MonitorFactory = Callable[[Path], AttributeMonitor]


def _health_percent(full: Optional[int], design: Optional[int]) -> Optional[int]:
    if full is None or design is None or design <= 0:
        return None
    return max(0, min(100, round(full * 100 / design)))


class SysfsBattery(BatteryDevice):
    """Charge control for one physical battery.

    Reads come straight from sysfs; writes go through the privileged
    helper. The end/start threshold and charge_behaviour attributes are
    monitored so changes made by other tools or the firmware show up as
    notifications.
    """

    def __init__(self, battery_path,
                 helper_locator: Callable[[], Optional[HelperRunner]] = HelperRunner.locate,
                 monitor_factory: Optional[MonitorFactory] = udev_monitor_factory,
                 verify_delays: Sequence[float] = FORCE_DISCHARGE_VERIFY_DELAYS):
        super().__init__()
        path = Path(battery_path)
        if not path.is_absolute() or not path.name:
            raise ValueError(f"Invalid battery path: {battery_path!r}")
        if not validate_battery_name(path.name):
            raise ValueError(f"Invalid battery name: {path.name!r}")

        self._sysfs_path = path
        self._battery_name = path.name

        # Detected in initialize()
        self.end_path: Optional[Path] = None
        self.start_path: Optional[Path] = None

        self.capacity_path = path / CAPACITY_FILE
        self.force_discharge_path = path / BEHAVIOUR_FILE
        self.energy_full_path = path / ENERGY_FULL_FILE
        self.energy_full_design_path = path / ENERGY_FULL_DESIGN_FILE
        self.charge_full_path = path / CHARGE_FULL_FILE
        self.charge_full_design_path = path / CHARGE_FULL_DESIGN_FILE

        self._helper_locator = helper_locator
        self._helper: Optional[HelperRunner] = None
        self._monitor_factory = monitor_factory
        self._verify_delays = tuple(verify_delays)

        self._threshold_monitor: Optional[AttributeMonitor] = None
        self._discharge_monitor: Optional[AttributeMonitor] = None
        self._tasks: Set[asyncio.Future] = set()

        self._thresholds = ThresholdPair()
        self._battery_level = 0
        self._health: Optional[int] = None
        self._supports_force_discharge = False
        self._force_discharge_enabled = False
        self._discharge_in_flight = False
        self._missing_helper = False

    @staticmethod
    def is_supported(battery_path) -> bool:
        """True if the battery exposes at least one end-threshold file."""
        return find_first(battery_path, THRESHOLD_END_FILES) is not None

    # --- Identity and capabilities ---

    @property
    def kind(self) -> DeviceKind:
        return DeviceKind.SYSFS

    @property
    def name(self) -> str:
        return f"Sysfs battery ({self._battery_name})"

    @property
    def battery_name(self) -> str:
        return self._battery_name

    @property
    def sysfs_path(self) -> Path:
        return self._sysfs_path

    @property
    def supports_force_discharge(self) -> bool:
        return self._supports_force_discharge

    @property
    def has_start_threshold(self) -> bool:
        return self.start_path is not None

    @property
    def needs_helper(self) -> bool:
        return self._missing_helper

    # --- Lifecycle ---

    async def initialize(self) -> bool:
        if self.destroyed:
            return False

        self.end_path = await run_blocking(find_first, self._sysfs_path, THRESHOLD_END_FILES)
        if self.destroyed:
            return False
        if self.end_path is None:
            log.debug("%s has no end threshold control", self._battery_name)
            return False
        self.start_path = await run_blocking(find_first, self._sysfs_path, THRESHOLD_START_FILES)
        self._supports_force_discharge = await run_blocking(self.force_discharge_path.exists)
        if self.destroyed:
            return False

        self._helper = self._helper_locator()
        self._missing_helper = self._helper is None
        if self._missing_helper:
            log.info("Charge control helper not found, %s will be read-only",
                     self._battery_name)

        await self._refresh(notify=False)
        if self.destroyed:
            return False

        self._start_monitoring()
        return True

    def destroy(self) -> None:
        if self.destroyed:
            return
        self._end_lifetime()
        for monitor in (self._threshold_monitor, self._discharge_monitor):
            if monitor is not None:
                monitor.cancel()
        self._threshold_monitor = None
        self._discharge_monitor = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    # --- Reads ---

    def get_thresholds(self) -> ThresholdPair:
        return self._thresholds

    def get_force_discharge(self) -> bool:
        return self._force_discharge_enabled

    def get_battery_level(self) -> int:
        return self._battery_level

    def get_health(self) -> Optional[int]:
        return self._health

    async def refresh_values(self) -> None:
        if self.destroyed or self.end_path is None:
            return
        await self._refresh(notify=True)

    async def _refresh(self, notify: bool) -> None:
        pair = await self._read_thresholds()
        if self.destroyed:
            return
        if pair is not None and pair != self._thresholds:
            self._thresholds = pair
            if notify:
                self._emit_thresholds(pair)

        level = await read_attr_int(self.capacity_path)
        if self.destroyed:
            return
        if level is not None:
            self._battery_level = max(0, min(100, level))

        health = await self._read_health()
        if self.destroyed:
            return
        self._health = health

        if self._supports_force_discharge:
            active = await self._read_force_discharge()
            if self.destroyed:
                return
            if active is not None and active != self._force_discharge_enabled:
                self._force_discharge_enabled = active
                if notify:
                    self._emit_force_discharge(active)

    async def _read_thresholds(self) -> Optional[ThresholdPair]:
        """Read both thresholds. None if the end threshold is unreadable."""
        end = await read_attr_int(self.end_path)
        if end is None or self.destroyed:
            return None
        if not self.has_start_threshold:
            # Without a start control charging resumes as soon as level drops below end.
            return ThresholdPair(0, end)
        start = await read_attr_int(self.start_path)
        if self.destroyed:
            return None
        if start is None:
            start = self._thresholds.start
        return ThresholdPair(start, end)

    async def _read_force_discharge(self) -> Optional[bool]:
        behaviour = await read_attr(self.force_discharge_path)
        if not behaviour:
            return None
        return is_force_discharge_active(behaviour)

    async def _read_health(self) -> Optional[int]:
        # Drivers expose either the energy (uWh) or the charge (uAh) family.
        health = _health_percent(await read_attr_int(self.energy_full_path),
                                 await read_attr_int(self.energy_full_design_path))
        if health is not None:
            return health
        return _health_percent(await read_attr_int(self.charge_full_path),
                               await read_attr_int(self.charge_full_design_path))

    # --- Threshold writes ---

    async def set_thresholds(self, start: int, end: int) -> bool:
        if self.destroyed:
            return False
        if self._missing_helper or self._helper is None:
            log.debug("Cannot set thresholds on %s: helper missing", self._battery_name)
            return False
        if not validate_threshold(start) or not validate_threshold(end):
            return False
        if self.has_start_threshold and start >= end:
            return False

        with self._suspend(self._threshold_monitor):
            ok, emitted = await self._write_thresholds(start, end)

        # Catch an external write that raced with ours.
        if not emitted and not self.destroyed:
            await self._sync_thresholds()
        return ok and not self.destroyed

    async def _write_thresholds(self, start: int, end: int) -> Tuple[bool, bool]:
        """Run the helper and confirm. Returns (succeeded, notified)."""
        current_end = await read_attr_int(self.end_path)
        if self.destroyed:
            return False, False
        if current_end is None:
            current_end = self._thresholds.end

        if self.has_start_threshold:
            # Never let start >= end exist on disk, even transiently.
            if start >= current_end:
                command = end_start_command(self._battery_name)
            else:
                command = start_end_command(self._battery_name)
            result = await self._helper.run(command, end, start)
        else:
            result = await self._helper.run(end_command(self._battery_name), end)

        if self.destroyed:
            return False, False
        if not result.ok:
            self._log_helper_failure("set thresholds", result)
            return False, False

        new_end = await read_attr_int(self.end_path)
        new_start = await read_attr_int(self.start_path) if self.has_start_threshold else 0
        if self.destroyed:
            return False, False

        pair = ThresholdPair(start if new_start is None else new_start,
                             end if new_end is None else new_end)
        self._thresholds = pair
        self._emit_thresholds(pair)
        return True, True

    async def _sync_thresholds(self) -> bool:
        pair = await self._read_thresholds()
        if pair is None or self.destroyed or pair == self._thresholds:
            return False
        self._thresholds = pair
        self._emit_thresholds(pair)
        return True

    # --- Force discharge ---

    async def set_force_discharge(self, enabled: bool) -> bool:
        if self.destroyed or not self._supports_force_discharge:
            return False
        if self._missing_helper or self._helper is None:
            log.debug("Cannot set force discharge on %s: helper missing", self._battery_name)
            return False
        if self._discharge_in_flight:
            log.debug("Force discharge write already in flight on %s", self._battery_name)
            return False

        enabled = bool(enabled)
        self._discharge_in_flight = True
        try:
            with self._suspend(self._discharge_monitor):
                ok = await self._write_force_discharge(enabled)
        finally:
            self._discharge_in_flight = False

        if not self.destroyed:
            await self._sync_force_discharge()
        return ok and not self.destroyed

    async def _write_force_discharge(self, enabled: bool) -> bool:
        mode = MODE_FORCE_DISCHARGE if enabled else MODE_AUTO
        if not validate_force_discharge_mode(mode):
            return False
        result = await self._helper.run(force_discharge_command(self._battery_name), mode)
        if self.destroyed:
            return False
        if not result.ok:
            self._log_helper_failure("set force discharge", result)
            return False

        if await self._verify_force_discharge(enabled):
            self._force_discharge_enabled = enabled
            self._emit_force_discharge(enabled)
            return True
        if self.destroyed:
            return False

        log.warning("Force discharge write on %s succeeded but verification failed. "
                    "Reverting state.", self._battery_name)
        await self._refresh(notify=False)
        if self.destroyed:
            return False
        self._emit_force_discharge(self._force_discharge_enabled)
        return False

    async def _verify_force_discharge(self, enabled: bool) -> bool:
        """Poll charge_behaviour with backoff until it reflects ``enabled``.

        The first read happens immediately; each failed read waits the
        next backoff delay. Destruction cuts a pending wait short.
        """
        for delay in self._verify_delays:
            active = await self._read_force_discharge()
            if self.destroyed:
                return False
            if active is not None and active == enabled:
                return True
            if not await self._lifetime.sleep(delay):
                return False
        return False

    async def _sync_force_discharge(self) -> bool:
        active = await self._read_force_discharge()
        if active is None or self.destroyed or active == self._force_discharge_enabled:
            return False
        self._force_discharge_enabled = active
        self._emit_force_discharge(active)
        return True

    # --- Monitoring ---

    def _start_monitoring(self) -> None:
        if self._threshold_monitor is None:
            self._threshold_monitor = self._create_monitor(
                self.end_path, self._on_threshold_monitor_event)
        if self._supports_force_discharge and self._discharge_monitor is None:
            self._discharge_monitor = self._create_monitor(
                self.force_discharge_path, self._on_discharge_monitor_event)

    def _create_monitor(self, path: Path, callback) -> Optional[AttributeMonitor]:
        if self._monitor_factory is None:
            return None
        try:
            monitor = self._monitor_factory(path)
        except Exception:
            log.exception("Failed to initialize monitor for %s", path)
            return None
        monitor.connect(callback)
        return monitor

    @staticmethod
    def _suspend(monitor: Optional[AttributeMonitor]):
        return monitor.suspended() if monitor is not None else nullcontext()

    def _on_threshold_monitor_event(self) -> None:
        if self.destroyed:
            return
        self._spawn(self._sync_thresholds())

    def _on_discharge_monitor_event(self) -> None:
        if self.destroyed:
            return
        self._spawn(self._sync_force_discharge())

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Monitor handler for %s failed", self._battery_name,
                      exc_info=task.exception())

    def _log_helper_failure(self, action: str, result: CommandResult) -> None:
        if result.status is ExitStatus.PRIVILEGE_REQUIRED:
            log.error("Privilege required to %s on %s - polkit rules may not be "
                      "configured. Reinstall the charge control helper.",
                      action, self._battery_name)
        elif result.status is ExitStatus.COMMAND_NOT_FOUND:
            log.error("Cannot %s on %s: charge control helper not found",
                      action, self._battery_name)
        elif result.stderr and result.stderr.strip():
            log.error("Failed to %s on %s: %s", action, self._battery_name,
                      result.stderr.strip())
        else:
            log.error("Failed to %s on %s (%s)", action, self._battery_name,
                      result.status.name)
