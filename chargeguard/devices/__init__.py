"""Device implementations and their registry."""

from typing import Dict, Type

from chargeguard.core.device import BatteryDevice
from chargeguard.core.types import DeviceKind

_registry: Dict[DeviceKind, Type[BatteryDevice]] = {}


def register_device(kind: DeviceKind, device_cls: Type[BatteryDevice]) -> None:
    """Register the implementation class for a device kind."""
    _registry[kind] = device_cls


def get_device_class(kind: DeviceKind) -> Type[BatteryDevice]:
    try:
        return _registry[kind]
    except KeyError:
        raise ValueError(f"No device registered for {kind.name}") from None


# Auto-register built-in devices on import.
from chargeguard.devices.sysfs import SysfsBattery  # noqa: E402
from chargeguard.devices.composite import CompositeBattery  # noqa: E402
from chargeguard.devices.mock import MockBattery  # noqa: E402

register_device(DeviceKind.SYSFS, SysfsBattery)
register_device(DeviceKind.COMPOSITE, CompositeBattery)
register_device(DeviceKind.MOCK, MockBattery)

__all__ = [
    "SysfsBattery",
    "CompositeBattery",
    "MockBattery",
    "register_device",
    "get_device_class",
]
