"""Core abstractions for battery charge control."""

from chargeguard.core.types import (
    DeviceKind,
    ExitStatus,
    ThresholdPair,
    CommandResult,
    UNKNOWN_THRESHOLD,
)
from chargeguard.core.signals import Signal
from chargeguard.core.device import BatteryDevice, Lifetime

__all__ = [
    "DeviceKind",
    "ExitStatus",
    "ThresholdPair",
    "CommandResult",
    "UNKNOWN_THRESHOLD",
    "Signal",
    "BatteryDevice",
    "Lifetime",
]
