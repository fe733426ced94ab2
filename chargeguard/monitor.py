"""Change monitoring for power_supply control attributes.

The kernel announces power_supply changes as udev "change" events on the
battery device. A monitor is bound to one attribute file; events for the
owning battery are passed to the connected callback. Monitors run on the
asyncio loop through the netlink socket's file descriptor, no threads.
"""

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional

import pyudev

log = logging.getLogger(__name__)

SUBSYSTEM = "power_supply"


class AttributeMonitor:
    """Base monitor with a detachable callback.

    Subclasses call ``_dispatch()`` when the watched attribute may have
    changed.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._callback: Optional[Callable[[], None]] = None
        self._cancelled = False

    @property
    def connected(self) -> bool:
        return self._callback is not None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def connect(self, callback: Callable[[], None]) -> None:
        if not self._cancelled:
            self._callback = callback

    def disconnect(self) -> Optional[Callable[[], None]]:
        callback, self._callback = self._callback, None
        return callback

    @contextmanager
    def suspended(self):
        """Detach the callback for the duration of the block.

        The callback is reattached on every exit path unless the monitor
        was cancelled in the meantime.
        """
        callback = self.disconnect()
        try:
            yield self
        finally:
            if callback is not None and not self._cancelled:
                self._callback = callback

    def cancel(self) -> None:
        self._cancelled = True
        self._callback = None

    def _dispatch(self) -> None:
        if self._callback is not None and not self._cancelled:
            self._callback()


class UdevAttributeMonitor(AttributeMonitor):
    """Watches udev change events for the battery owning ``path``."""

    def __init__(self, path, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__(path)
        self._sys_name = self.path.parent.name
        self._loop = loop or asyncio.get_running_loop()

        context = pyudev.Context()
        self._monitor = pyudev.Monitor.from_netlink(context)
        self._monitor.filter_by(subsystem=SUBSYSTEM)
        self._monitor.start()
        self._fd = self._monitor.fileno()
        self._loop.add_reader(self._fd, self._on_readable)

    def _on_readable(self) -> None:
        while True:
            device = self._monitor.poll(timeout=0)
            if device is None:
                break
            if device.action == "change" and device.sys_name == self._sys_name:
                self._dispatch()

    def cancel(self) -> None:
        if not self._cancelled:
            self._loop.remove_reader(self._fd)
        super().cancel()


def udev_monitor_factory(path) -> AttributeMonitor:
    return UdevAttributeMonitor(path)
