"""Tests for battery discovery."""

import pytest

from chargeguard.config import Config, get_config_dir
from chargeguard.core.manager import DeviceManager
from chargeguard.core.types import DeviceKind
from chargeguard.devices import _registry
from chargeguard.devices.composite import CompositeBattery
from chargeguard.devices.mock import MockBattery
from chargeguard.devices.sysfs import SysfsBattery

from tests.conftest import FakeMonitorFactory, make_battery


@pytest.fixture
def manager_for(power_supply, helper, monitors):
    created = []

    def _make(**kwargs):
        kwargs.setdefault("use_mock", False)
        kwargs.setdefault("helper_locator", lambda: helper)
        kwargs.setdefault("monitor_factory", monitors)
        manager = DeviceManager(config=Config({}), power_supply_dir=power_supply, **kwargs)
        created.append(manager)
        return manager

    return _make


class TestCandidates:
    def test_filters_non_system_batteries(self, power_supply, manager_for):
        make_battery(power_supply, "BAT0")
        make_battery(power_supply, "AC", ps_type="Mains")
        make_battery(power_supply, "hidpp_battery_0", scope="Device")
        make_battery(power_supply, "BAT1", present="0")
        make_battery(power_supply, "BAT2", end=None, start=None)
        make_battery(power_supply, "BAT3", scope="System", present=None)

        names = [p.name for p in manager_for().find_candidates()]
        assert names == ["BAT0", "BAT3"]

    def test_natural_order(self, power_supply, manager_for):
        for name in ("BAT10", "BAT1", "BAT0", "BAT2"):
            make_battery(power_supply, name)
        names = [p.name for p in manager_for().find_candidates()]
        assert names == ["BAT0", "BAT1", "BAT2", "BAT10"]

    def test_missing_directory(self, tmp_path, helper):
        manager = DeviceManager(config=Config({}), power_supply_dir=tmp_path / "nope",
                                helper_locator=lambda: helper, use_mock=False)
        assert manager.find_candidates() == []


class TestGetDevice:
    @pytest.mark.asyncio
    async def test_no_battery(self, manager_for):
        assert await manager_for().get_device() is None

    @pytest.mark.asyncio
    async def test_single_battery_is_returned_bare(self, power_supply, manager_for):
        make_battery(power_supply, "BAT0")
        device = await manager_for().get_device()
        try:
            assert isinstance(device, SysfsBattery)
            assert device.battery_name == "BAT0"
        finally:
            device.destroy()

    @pytest.mark.asyncio
    async def test_composite_in_name_order(self, power_supply, manager_for):
        for name in ("BAT10", "BAT1", "BAT0"):
            make_battery(power_supply, name)
        device = await manager_for().get_device()
        try:
            assert isinstance(device, CompositeBattery)
            assert [d.battery_name for d in device.devices] == ["BAT0", "BAT1", "BAT10"]
            assert device.battery_name == "BAT0"
        finally:
            device.destroy()

    @pytest.mark.asyncio
    async def test_members_share_one_helper(self, power_supply, tmp_path, monkeypatch):
        make_battery(power_supply, "BAT0")
        make_battery(power_supply, "BAT1")
        helper_bin = tmp_path / "bin" / "chargeguard-ctl"
        helper_bin.parent.mkdir()
        helper_bin.write_text("#!/bin/sh\nexit 0\n")
        helper_bin.chmod(0o755)
        monkeypatch.setenv("PATH", str(helper_bin.parent))

        manager = DeviceManager(config=Config({}), power_supply_dir=power_supply,
                                monitor_factory=FakeMonitorFactory(), use_mock=False)
        device = await manager.get_device()
        try:
            first, second = device.devices
            assert first._helper is second._helper
            assert first._helper.path == str(helper_bin)
            assert not device.needs_helper
        finally:
            device.destroy()

    @pytest.mark.asyncio
    async def test_failed_initialization_is_skipped(self, power_supply, manager_for, monkeypatch):
        make_battery(power_supply, "BAT0")
        make_battery(power_supply, "BAT1")
        make_battery(power_supply, "BAT2")
        destroyed = []

        class FlakyBattery(SysfsBattery):
            async def initialize(self):
                if self.battery_name == "BAT1":
                    return False
                return await super().initialize()

            def destroy(self):
                destroyed.append(self.battery_name)
                super().destroy()

        monkeypatch.setitem(_registry, DeviceKind.SYSFS, FlakyBattery)
        device = await manager_for().get_device()
        try:
            assert [d.battery_name for d in device.devices] == ["BAT0", "BAT2"]
            assert destroyed == ["BAT1"]
        finally:
            device.destroy()

    @pytest.mark.asyncio
    async def test_initialization_exception_is_skipped(self, power_supply, manager_for, monkeypatch):
        make_battery(power_supply, "BAT0")
        make_battery(power_supply, "BAT1")

        class BrokenBattery(SysfsBattery):
            async def initialize(self):
                if self.battery_name == "BAT0":
                    raise OSError("EIO")
                return await super().initialize()

        monkeypatch.setitem(_registry, DeviceKind.SYSFS, BrokenBattery)
        device = await manager_for().get_device()
        try:
            assert isinstance(device, BrokenBattery)
            assert device.battery_name == "BAT1"
        finally:
            device.destroy()

    @pytest.mark.asyncio
    async def test_unexpected_error_destroys_ready_devices(
            self, power_supply, manager_for, monkeypatch):
        make_battery(power_supply, "BAT0")
        make_battery(power_supply, "BAT1")
        built = []
        real_init = DeviceManager._init_battery

        async def init_then_fail(self, path):
            if built:
                raise RuntimeError("power_supply vanished")
            device = await real_init(self, path)
            built.append(device)
            return device

        monkeypatch.setattr(DeviceManager, "_init_battery", init_then_fail)
        assert await manager_for().get_device() is None
        assert built[0].destroyed

    @pytest.mark.asyncio
    async def test_mock_requested(self, power_supply, manager_for):
        make_battery(power_supply, "BAT0")
        device = await manager_for(use_mock=True).get_device()
        assert isinstance(device, MockBattery)
        device.destroy()

    @pytest.mark.asyncio
    async def test_mock_marker_file(self, power_supply, helper, monitors):
        (get_config_dir() / "use_mock").touch()
        manager = DeviceManager(config=Config({}), power_supply_dir=power_supply,
                                helper_locator=lambda: helper, monitor_factory=monitors)
        device = await manager.get_device()
        assert isinstance(device, MockBattery)
        device.destroy()

    @pytest.mark.asyncio
    async def test_monitoring_disabled_by_config(self, power_supply, helper, monitors):
        make_battery(power_supply, "BAT0")
        config = Config({"monitoring": {"enabled": False}})
        manager = DeviceManager(config=config, power_supply_dir=power_supply,
                                helper_locator=lambda: helper, monitor_factory=monitors,
                                use_mock=False)
        device = await manager.get_device()
        try:
            assert device is not None
            assert monitors.monitors == []
        finally:
            device.destroy()
