"""Shared fixtures: a fake power_supply tree, helper and monitors."""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from chargeguard.core.types import CommandResult, ExitStatus
from chargeguard.monitor import AttributeMonitor
from chargeguard.sysfs import (
    MODE_FORCE_DISCHARGE,
    THRESHOLD_END_FILES,
    THRESHOLD_START_FILES,
    find_first,
)

FAST_DELAYS = (0.001,) * 6

BEHAVIOUR_AUTO = "[auto] inhibit-charge force-discharge"
BEHAVIOUR_FORCE = "auto inhibit-charge [force-discharge]"


def make_battery(root: Path, name: str = "BAT0", start: Optional[int] = 75,
                 end: Optional[int] = 80, capacity: int = 64,
                 behaviour: Optional[str] = None,
                 energy: Optional[tuple] = (45000000, 50000000),
                 charge: Optional[tuple] = None,
                 end_file: str = THRESHOLD_END_FILES[0],
                 start_file: str = THRESHOLD_START_FILES[0],
                 ps_type: str = "Battery", scope: Optional[str] = None,
                 present: Optional[str] = "1") -> Path:
    """Create /sys/class/power_supply/<name> under ``root``."""
    bat = root / name
    bat.mkdir(parents=True)
    (bat / "type").write_text(ps_type + "\n")
    if scope is not None:
        (bat / "scope").write_text(scope + "\n")
    if present is not None:
        (bat / "present").write_text(present + "\n")
    (bat / "capacity").write_text(f"{capacity}\n")
    if end is not None:
        (bat / end_file).write_text(f"{end}\n")
    if start is not None:
        (bat / start_file).write_text(f"{start}\n")
    if behaviour is not None:
        (bat / "charge_behaviour").write_text(behaviour + "\n")
    if energy is not None:
        (bat / "energy_full").write_text(f"{energy[0]}\n")
        (bat / "energy_full_design").write_text(f"{energy[1]}\n")
    if charge is not None:
        (bat / "charge_full").write_text(f"{charge[0]}\n")
        (bat / "charge_full_design").write_text(f"{charge[1]}\n")
    return bat


def write_attr(path: Path, value) -> None:
    path.write_text(f"{value}\n")


async def settle(rounds: int = 20) -> None:
    """Let spawned monitor tasks and their executor reads run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0.005)


class FakeHelper:
    """Stands in for HelperRunner and applies commands to the fake tree."""

    def __init__(self, root: Path):
        self.root = root
        self.calls: List[tuple] = []
        self.status = ExitStatus.SUCCESS
        self.stderr = ""
        self.apply = True
        self.fail_for = set()
        self.on_run: Optional[Callable[[str, tuple], None]] = None

    async def run(self, command: str, *args) -> CommandResult:
        args = tuple(str(a) for a in args)
        self.calls.append((command,) + args)
        if self.on_run is not None:
            self.on_run(command, args)
        await asyncio.sleep(0)

        battery = self._battery_of(command)
        if battery in self.fail_for:
            return CommandResult(ExitStatus.ERROR, "", f"write to {battery} failed")
        if self.status is ExitStatus.SUCCESS and self.apply:
            self._apply(battery, command, args)
        return CommandResult(self.status, "", self.stderr)

    @staticmethod
    def _battery_of(command: str) -> str:
        if command.startswith("FORCE_DISCHARGE_"):
            return command[len("FORCE_DISCHARGE_"):]
        for suffix in ("_START_END", "_END_START", "_END"):
            if command.endswith(suffix):
                return command[:-len(suffix)]
        raise ValueError(command)

    def _apply(self, battery: str, command: str, args: tuple) -> None:
        bat = self.root / battery
        if command.startswith("FORCE_DISCHARGE_"):
            text = BEHAVIOUR_FORCE if args[0] == MODE_FORCE_DISCHARGE else BEHAVIOUR_AUTO
            write_attr(bat / "charge_behaviour", text)
            return
        write_attr(find_first(bat, THRESHOLD_END_FILES), args[0])
        if len(args) > 1:
            write_attr(find_first(bat, THRESHOLD_START_FILES), args[1])


class FakeMonitor(AttributeMonitor):
    def trigger(self) -> None:
        self._dispatch()


class FakeMonitorFactory:
    def __init__(self):
        self.monitors: List[FakeMonitor] = []

    def __call__(self, path) -> FakeMonitor:
        monitor = FakeMonitor(path)
        self.monitors.append(monitor)
        return monitor

    def for_file(self, filename: str, battery: str = "BAT0") -> FakeMonitor:
        for monitor in self.monitors:
            if monitor.path.name == filename and monitor.path.parent.name == battery:
                return monitor
        raise LookupError(filename)


class Recorder:
    """Collects every notification a device emits."""

    def __init__(self, device):
        self.events: List[tuple] = []
        device.threshold_changed.connect(
            lambda start, end: self.events.append(("threshold", start, end)))
        device.force_discharge_changed.connect(
            lambda enabled: self.events.append(("force_discharge", enabled)))
        device.partial_failure.connect(
            lambda primary, failed: self.events.append(("partial_failure", primary, failed)))

    def of(self, kind: str) -> List[tuple]:
        return [e for e in self.events if e[0] == kind]


@pytest.fixture
def power_supply(tmp_path) -> Path:
    root = tmp_path / "power_supply"
    root.mkdir()
    return root


@pytest.fixture
def helper(power_supply) -> FakeHelper:
    return FakeHelper(power_supply)


@pytest.fixture
def monitors() -> FakeMonitorFactory:
    return FakeMonitorFactory()


@pytest.fixture
def make_device(power_supply, helper, monitors):
    """Build an (uninitialized) SysfsBattery wired to the fakes."""
    from chargeguard.devices.sysfs import SysfsBattery

    created = []

    def _make(name: str = "BAT0", with_helper: bool = True,
              delays=FAST_DELAYS) -> SysfsBattery:
        device = SysfsBattery(
            power_supply / name,
            helper_locator=(lambda: helper) if with_helper else (lambda: None),
            monitor_factory=monitors,
            verify_delays=delays,
        )
        created.append(device)
        return device

    yield _make
    for device in created:
        device.destroy()


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Keep config reads and writes inside the test's temp dir."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
