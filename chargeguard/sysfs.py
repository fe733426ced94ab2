"""Access to /sys/class/power_supply attributes.

Some drivers answer attribute reads by querying the embedded controller,
which can take a while. The async variants run reads on the loop's default
executor so only the calling task waits.
"""

import asyncio
import re
from pathlib import Path
from typing import List, Optional, Union

POWER_SUPPLY_DIR = Path("/sys/class/power_supply")

# First match wins
THRESHOLD_END_FILES = ("charge_control_end_threshold", "stop_charge_thresh")
THRESHOLD_START_FILES = ("charge_control_start_threshold", "start_charge_thresh")

CAPACITY_FILE = "capacity"
BEHAVIOUR_FILE = "charge_behaviour"
TYPE_FILE = "type"
SCOPE_FILE = "scope"
PRESENT_FILE = "present"

ENERGY_FULL_FILE = "energy_full"
ENERGY_FULL_DESIGN_FILE = "energy_full_design"
CHARGE_FULL_FILE = "charge_full"
CHARGE_FULL_DESIGN_FILE = "charge_full_design"

MODE_FORCE_DISCHARGE = "force-discharge"
MODE_AUTO = "auto"

PathLike = Union[str, Path]


def read_sysfs(path: PathLike) -> Optional[str]:
    """Read a sysfs attribute file, returning stripped content or None."""
    try:
        return Path(path).read_text().strip()
    except (OSError, UnicodeDecodeError):
        return None


def parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


async def run_blocking(func, *args):
    """Run a blocking call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


async def read_attr(path: PathLike) -> Optional[str]:
    return await run_blocking(read_sysfs, path)


async def read_attr_int(path: PathLike) -> Optional[int]:
    return parse_int(await read_attr(path))


def find_first(directory: PathLike, filenames) -> Optional[Path]:
    """Return the first of ``filenames`` that exists inside ``directory``."""
    directory = Path(directory)
    for filename in filenames:
        candidate = directory / filename
        if candidate.exists():
            return candidate
    return None


def is_force_discharge_active(behaviour: Optional[str]) -> bool:
    """Parse a charge_behaviour value such as 'auto [force-discharge]'.

    The kernel brackets the active mode. Some drivers expose just the
    active mode without brackets.
    """
    if not behaviour:
        return False
    if f"[{MODE_FORCE_DISCHARGE}]" in behaviour:
        return True
    if "[" not in behaviour:
        return behaviour.strip() == MODE_FORCE_DISCHARGE
    return False


def natural_key(name: str) -> List:
    """Sort key that orders BAT2 before BAT10."""
    return [int(part) if part.isdigit() else part.lower()
            for part in re.split(r"(\d+)", name)]
