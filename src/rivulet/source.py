"""Source nodes: state set from outside the graph.

A Source never computes. Its state changes only through set(), set_error() and
unset(); it reports through the same path as every other node, so a set()
with a structurally equal value notifies nobody. Attaching a Source never
triggers a recompute and detaching it keeps its state.

Thread safety: call set_scheduler() once from the owner thread. After that,
any set()/set_error() from a background thread is auto-marshaled. Owner-thread
calls remain synchronous.
"""

from __future__ import annotations

import threading
from typing import Any, TypeVar

from rivulet._errors import ClosedError
from rivulet.node import Node

T = TypeVar("T")

_UNSET = object()

# ─── Auto-marshal ────────────────────────────────────────────────────────────
_scheduler = None
_scheduler_thread = None


def set_scheduler(scheduler) -> None:
    """Set the global thread scheduler for cross-thread Source writes.

    Call once from the main/UI thread:
        rivulet.set_scheduler(loop.call_soon_threadsafe)

    After this, any Source.set() from a background thread is automatically
    marshaled. Main-thread writes remain synchronous. Pass None to turn
    marshaling off.
    """
    global _scheduler, _scheduler_thread
    _scheduler = scheduler
    _scheduler_thread = threading.current_thread() if scheduler is not None else None


def _off_thread() -> bool:
    return _scheduler is not None and threading.current_thread() != _scheduler_thread


class Source(Node[T]):
    """A node driven by hand."""

    __slots__ = ()

    def __init__(self, value: Any = _UNSET, *, name: str | None = None, **options: Any) -> None:
        super().__init__(name=name, **options)
        self.attach()
        if value is not _UNSET:
            self.report(None, value)

    def set(self, value: T, force_notify: bool = False) -> None:
        """Write a new value. Auto-marshals from background threads."""
        if _off_thread():
            _scheduler(lambda: self.report(None, value, force_notify))
        else:
            self.report(None, value, force_notify)

    def set_error(self, error: BaseException, force_notify: bool = False) -> None:
        """Put the source in an error state. Auto-marshals from background threads."""
        if _off_thread():
            _scheduler(lambda: self.report(error, None, force_notify))
        else:
            self.report(error, None, force_notify)

    def unset(self) -> None:
        """Drop back to invalid without notifying."""
        if self._closed:
            raise ClosedError(f"cannot unset closed {self!r}")
        self._invalidate_state()

    def invalidate(self, force_notify: bool = False) -> None:
        """Sources never recompute. With force_notify, re-broadcast the current state."""
        super().invalidate(force_notify)
        if force_notify and self._valid:
            self._store(self._error, self._value, self._key, True)

    def __repr__(self) -> str:
        if self._closed:
            state = "closed"
        elif not self._valid:
            state = "<unset>"
        elif self._error is not None:
            state = f"error={self._error!r}"
        else:
            state = repr(self._value)
        if self._name:
            return f"Source({self._name}, {state})"
        return f"Source({state})"
