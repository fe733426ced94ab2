"""chargeguard - battery charge threshold and force-discharge control."""

from chargeguard.core import BatteryDevice, ThresholdPair
from chargeguard.core.manager import DeviceManager

__version__ = "0.3.0"

__all__ = ["BatteryDevice", "ThresholdPair", "DeviceManager", "__version__"]
