"""Invocation of the privileged charge-control helper.

The helper is an external, already-installed executable that performs the
actual sysfs writes as root. It is run through pkexec with a command token
and one or two value arguments, e.g.::

    pkexec chargeguard-ctl BAT0_START_END 80 75
    pkexec chargeguard-ctl FORCE_DISCHARGE_BAT1 auto
"""

import asyncio
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Optional

from chargeguard.core.types import CommandResult, ExitStatus
from chargeguard.sysfs import MODE_AUTO, MODE_FORCE_DISCHARGE

log = logging.getLogger(__name__)

HELPER_BIN_NAME = "chargeguard-ctl"
HELPER_FALLBACK_DIR = "/usr/local/bin"
EXEC_TIMEOUT_SECONDS = 5.0
MAX_QUEUE_DEPTH = 8

_BATTERY_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


# --- Validation ---

def validate_battery_name(name) -> bool:
    """Strict alphanumeric + underscore (common sysfs naming)."""
    return isinstance(name, str) and bool(_BATTERY_NAME_RE.match(name))


def validate_threshold(value) -> bool:
    """Integer percentage in 0..100. Floats, strings and bools are rejected."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return 0 <= value <= 100


def validate_force_discharge_mode(mode) -> bool:
    return mode in (MODE_FORCE_DISCHARGE, MODE_AUTO)


# --- Command tokens ---

def end_command(battery: str) -> str:
    return f"{battery}_END"


def start_end_command(battery: str) -> str:
    return f"{battery}_START_END"


def end_start_command(battery: str) -> str:
    return f"{battery}_END_START"


def force_discharge_command(battery: str) -> str:
    return f"FORCE_DISCHARGE_{battery}"


def find_helper(name: str = HELPER_BIN_NAME,
                fallback_dir: Optional[str] = HELPER_FALLBACK_DIR) -> Optional[str]:
    """Locate the helper on PATH, then in ``fallback_dir``."""
    found = shutil.which(name)
    if found:
        return found
    if fallback_dir:
        candidate = Path(fallback_dir) / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


class HelperRunner:
    """Runs helper commands one at a time.

    Privileged invocations are serialized so only one pkexec prompt or
    helper process is alive at once. The queue is bounded: once
    ``max_queue_depth`` commands are pending, new ones are rejected.
    """

    def __init__(self, path: str, use_pkexec: bool = True,
                 timeout: float = EXEC_TIMEOUT_SECONDS,
                 max_queue_depth: int = MAX_QUEUE_DEPTH):
        self.path = path
        self.use_pkexec = use_pkexec
        self.timeout = timeout
        self.max_queue_depth = max_queue_depth
        self._lock: Optional[asyncio.Lock] = None
        self._depth = 0

    @classmethod
    def locate(cls, name: str = HELPER_BIN_NAME,
               fallback_dir: Optional[str] = HELPER_FALLBACK_DIR,
               **kwargs) -> Optional["HelperRunner"]:
        path = find_helper(name, fallback_dir)
        if path is None:
            return None
        return cls(path, **kwargs)

    @property
    def pending(self) -> int:
        return self._depth

    async def run(self, command: str, *args) -> CommandResult:
        if self._depth >= self.max_queue_depth:
            log.warning("Command queue full (%d pending), rejecting command: %s",
                        self._depth, command)
            return CommandResult(ExitStatus.ERROR, None,
                                 "Command queue full - too many pending operations")

        argv = [self.path, command] + [str(a) for a in args if a is not None]
        if self.use_pkexec:
            argv.insert(0, "pkexec")

        if self._lock is None:
            self._lock = asyncio.Lock()

        self._depth += 1
        try:
            async with self._lock:
                return await self._exec(argv, command)
        finally:
            self._depth -= 1

    async def _exec(self, argv, command) -> CommandResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            log.error("Cannot run %s: %s", argv[0], e)
            return CommandResult(ExitStatus.COMMAND_NOT_FOUND, None, str(e))
        except OSError as e:
            log.error("Command execution failed: %s", e)
            return CommandResult(ExitStatus.ERROR, None, str(e))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            log.warning("Command '%s' timed out after %.1fs", command, self.timeout)
            if self._kill(proc, command):
                await proc.wait()
            return CommandResult(ExitStatus.TIMEOUT)
        except asyncio.CancelledError:
            self._kill(proc, command)
            raise

        status = ExitStatus.classify(proc.returncode)
        out = stdout.decode(errors="replace") if stdout else ""
        err = stderr.decode(errors="replace") if stderr else ""
        if status is not ExitStatus.SUCCESS:
            log.debug("Command '%s' failed: %s", " ".join(argv),
                      err.strip() or f"exit code {proc.returncode}")
        return CommandResult(status, out, err)

    @staticmethod
    def _kill(proc, command) -> bool:
        # A helper elevated by pkexec runs as root and cannot be signalled.
        try:
            proc.kill()
        except (ProcessLookupError, PermissionError) as e:
            log.warning("Could not stop command '%s': %s", command, e)
            return False
        return True
