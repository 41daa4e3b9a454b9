"""Ordered registry of known Zeros, keyed by their uuid."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Optional, Protocol

_log = logging.getLogger(__name__)


class Zero(Protocol):
    """What the list needs from a Zero."""

    uuid: str

    def stop(self) -> Any: ...


IndexCallback = Optional[Callable[[int], object]]


class ZeroList:
    """Keeps Zeros in insertion order and reports changes by row index."""

    def __init__(self) -> None:
        self._zeros: dict[str, Zero] = {}
        self.on_before_adding: IndexCallback = None
        self.on_added: IndexCallback = None
        self.on_updated: IndexCallback = None
        self.on_parameter_changed: Optional[Callable[[int, Any], object]] = None
        self.on_before_erasing: IndexCallback = None
        self.on_erased: IndexCallback = None
        self.on_status_message: Optional[Callable[[str], object]] = None

    def __len__(self) -> int:
        return len(self._zeros)

    def __iter__(self) -> Iterator[Zero]:
        return iter(list(self._zeros.values()))

    def __contains__(self, uuid: object) -> bool:
        return uuid in self._zeros

    @property
    def zeros(self) -> tuple[Zero, ...]:
        """The Zeros in row order."""
        return tuple(self._zeros.values())

    def index(self, uuid: str) -> int:
        """Row of the Zero with this uuid; raises KeyError if unknown."""
        if uuid not in self._zeros:
            raise KeyError(uuid)
        return list(self._zeros).index(uuid)

    def insert(self, zero: Zero) -> bool:
        """Append a Zero; returns False if its uuid is already known."""
        if zero.uuid in self._zeros:
            return False
        index = len(self._zeros)
        _emit(self.on_before_adding, index)
        self._zeros[zero.uuid] = zero
        _emit(self.on_added, index)
        return True

    def contains(self, uuid: str) -> bool:
        return uuid in self._zeros

    def get(self, uuid: str) -> Zero | None:
        """The Zero with this uuid, or None."""
        return self._zeros.get(uuid)

    def erase(self, uuid: str) -> None:
        """Remove the Zero with this uuid; unknown uuids are ignored."""
        if uuid not in self._zeros:
            return
        index = self.index(uuid)
        _emit(self.on_before_erasing, index)
        del self._zeros[uuid]
        _emit(self.on_erased, index)

    def notify_updated(self, uuid: str) -> None:
        """Report that the status of a Zero changed."""
        if uuid in self._zeros:
            _emit(self.on_updated, self.index(uuid))

    def notify_parameter_changed(self, uuid: str, parameter: Any) -> None:
        """Report that a parameter of a Zero changed."""
        if uuid not in self._zeros:
            _log.warning("Received unknown uuid %s in parameter change", uuid)
            return
        index = self.index(uuid)
        _log.debug("UUID %s at row %d with parameter %s", uuid, index, parameter)
        _emit(self.on_parameter_changed, index, parameter)

    def send_status_message(self, message: str) -> None:
        """Pass a status message from a Zero on to the listener."""
        _emit(self.on_status_message, message)

    def clear(self) -> None:
        """Stop every Zero in the list."""
        _log.debug("List size: %d", len(self._zeros))
        for zero in list(self._zeros.values()):
            zero.stop()


def _emit(callback: Optional[Callable[..., object]], *args: Any) -> None:
    if callback is not None:
        callback(*args)