"""Device manager - discovers batteries and builds the device to control."""

import logging
from pathlib import Path
from typing import Callable, List, Optional

from chargeguard.config import Config, use_mock_device
from chargeguard.core.device import BatteryDevice
from chargeguard.core.types import DeviceKind
from chargeguard.devices import get_device_class
from chargeguard.helper import HelperRunner
from chargeguard.monitor import udev_monitor_factory
from chargeguard.sysfs import (
    PRESENT_FILE,
    SCOPE_FILE,
    TYPE_FILE,
    natural_key,
    read_sysfs,
    run_blocking,
)

log = logging.getLogger(__name__)


class DeviceManager:
    """Discovers charge-controllable batteries.

    One controller is built per supported system battery. A single ready
    battery is returned as-is; several are wrapped in a composite ordered
    by name (BAT0, BAT1, ..., BAT10) so the primary is deterministic.
    """

    def __init__(self, config: Optional[Config] = None,
                 power_supply_dir=None,
                 helper_locator: Optional[Callable[[], Optional[HelperRunner]]] = None,
                 monitor_factory=udev_monitor_factory,
                 use_mock: Optional[bool] = None):
        self._config = config if config is not None else Config()
        self._power_supply_dir = Path(power_supply_dir or self._config.power_supply_dir)
        self._helper_locator = helper_locator or self._locate_helper
        if not self._config.monitoring_enabled:
            monitor_factory = None
        self._monitor_factory = monitor_factory
        self._use_mock = use_mock
        self._helper: Optional[HelperRunner] = None
        self._helper_searched = False

    def _locate_helper(self) -> Optional[HelperRunner]:
        # Shared by every battery so all privileged calls go through one queue.
        if not self._helper_searched:
            helper_cfg = self._config.helper
            self._helper = HelperRunner.locate(
                helper_cfg["name"],
                helper_cfg["fallback_dir"],
                use_pkexec=helper_cfg["use_pkexec"],
                timeout=float(helper_cfg["timeout_seconds"]),
                max_queue_depth=int(helper_cfg["max_queue_depth"]),
            )
            self._helper_searched = True
        return self._helper

    def _wants_mock(self) -> bool:
        if self._use_mock is not None:
            return self._use_mock
        return use_mock_device()

    def find_candidates(self) -> List[Path]:
        """System batteries that expose charge-threshold controls, in name order."""
        sysfs_cls = get_device_class(DeviceKind.SYSFS)
        if not self._power_supply_dir.is_dir():
            return []
        candidates = []
        for entry in self._power_supply_dir.iterdir():
            if not self._is_system_battery(entry):
                continue
            if not sysfs_cls.is_supported(entry):
                log.debug("%s has no charge threshold control", entry.name)
                continue
            candidates.append(entry)
        candidates.sort(key=lambda p: natural_key(p.name))
        return candidates

    @staticmethod
    def _is_system_battery(entry: Path) -> bool:
        if read_sysfs(entry / TYPE_FILE) != "Battery":
            return False
        # Peripheral batteries (mice, keyboards) report scope=Device
        scope = read_sysfs(entry / SCOPE_FILE)
        if scope is not None and scope != "System":
            return False
        present = read_sysfs(entry / PRESENT_FILE)
        return present is None or present == "1"

    async def get_device(self) -> Optional[BatteryDevice]:
        """Return the device to control, or None if nothing is supported."""
        if self._wants_mock():
            log.info("Mock device requested via config")
            device = get_device_class(DeviceKind.MOCK)()
            if await device.initialize():
                return device
            device.destroy()

        ready: List[BatteryDevice] = []
        try:
            for path in await run_blocking(self.find_candidates):
                device = await self._init_battery(path)
                if device is not None:
                    ready.append(device)
        except Exception:
            for device in ready:
                device.destroy()
            log.exception("Battery discovery failed in %s", self._power_supply_dir)
            return None

        if not ready:
            log.info("No supported battery control device found")
            return None
        if len(ready) == 1:
            log.info("Using %s", ready[0].name)
            return ready[0]

        log.info("Detected %d batteries: %s", len(ready),
                 ", ".join(d.battery_name for d in ready))
        return get_device_class(DeviceKind.COMPOSITE)(ready)

    async def _init_battery(self, path: Path) -> Optional[BatteryDevice]:
        sysfs_cls = get_device_class(DeviceKind.SYSFS)
        try:
            device = sysfs_cls(
                path,
                helper_locator=self._helper_locator,
                monitor_factory=self._monitor_factory,
                verify_delays=self._config.verify_delays,
            )
        except ValueError as e:
            log.warning("Skipping battery %s: %s", path.name, e)
            return None
        try:
            ok = await device.initialize()
        except Exception:
            log.exception("Failed to initialize %s", path.name)
            ok = False
        if not ok:
            log.warning("Could not initialize battery %s, skipping", path.name)
            device.destroy()
            return None
        return device
