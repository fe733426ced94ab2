"""Core data types for battery charge control."""

from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import Optional


UNKNOWN_THRESHOLD = -1


class DeviceKind(Enum):
    """Which implementation backs a device."""
    SYSFS = auto()
    COMPOSITE = auto()
    MOCK = auto()


class ExitStatus(IntEnum):
    """Exit status of a privileged helper invocation."""
    SUCCESS = 0
    ERROR = 1
    NEEDS_UPDATE = 2
    TIMEOUT = 3
    PRIVILEGE_REQUIRED = 126
    COMMAND_NOT_FOUND = 127
    UNKNOWN = -1

    @classmethod
    def classify(cls, returncode: Optional[int]) -> "ExitStatus":
        """Map a raw process return code onto a known status."""
        if returncode is None:
            return cls.UNKNOWN
        try:
            return cls(returncode)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ThresholdPair:
    """Charge start/stop percentages. -1 means unknown."""
    start: int = UNKNOWN_THRESHOLD
    end: int = UNKNOWN_THRESHOLD


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one helper invocation."""
    status: ExitStatus
    stdout: Optional[str] = None
    stderr: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ExitStatus.SUCCESS
