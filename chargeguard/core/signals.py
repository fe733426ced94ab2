"""Explicit notification channels for devices.

Each device owns one Signal per notification type. Subscribers connect a
callback and get back a handler id they can later disconnect.
"""

import itertools
import logging
from typing import Callable, Dict

log = logging.getLogger(__name__)

_handler_ids = itertools.count(1)


class Signal:
    """A named list of callbacks invoked synchronously on emit."""

    def __init__(self, name: str):
        self.name = name
        self._handlers: Dict[int, Callable[..., None]] = {}

    def connect(self, callback: Callable[..., None]) -> int:
        handler_id = next(_handler_ids)
        self._handlers[handler_id] = callback
        return handler_id

    def disconnect(self, handler_id: int) -> bool:
        return self._handlers.pop(handler_id, None) is not None

    def disconnect_all(self) -> None:
        self._handlers.clear()

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def emit(self, *args) -> None:
        # Copy so handlers may disconnect themselves while being called.
        for handler_id, callback in list(self._handlers.items()):
            try:
                callback(*args)
            except Exception:
                log.exception("Handler %d for signal '%s' failed", handler_id, self.name)

    def __repr__(self) -> str:
        return f"Signal({self.name!r}, handlers={len(self._handlers)})"
