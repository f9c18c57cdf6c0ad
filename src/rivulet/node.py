"""Nodes: the vertices of the reactive graph.

A node holds one state: invalid (nothing computed yet), a value, or an error.
report() stores a new valid state and decides, by structural hash, whether
listeners hear about it. Listeners are other nodes or terminal consumers;
subscribing attaches the node, losing the last listener detaches it (or
closes it, with autoclose). close() is terminal.

This module holds the state and lifecycle shared by every node. Nodes that
compute live in rivulet.derived; nodes driven by hand in rivulet.source.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Generic, TypeVar

from rivulet._errors import ClosedError, Defer, NotReadyError
from rivulet._listeners import ListenerSet, Subscription
from rivulet._tracking import begin_batch, end_batch
from rivulet.config import NodeOptions, get_defaults

T = TypeVar("T")

logger = logging.getLogger(__name__)

# No notification has fired yet. Compares unequal to every key.
_NEVER = object()

# Hashing failed. Compares unequal to every key, itself included.
_UNHASHABLE = object()

# Process-wide debug hooks, installed by rivulet.debug.
_on_create: Callable[[Node], None] | None = None
_on_dependencies: Callable[[Node, tuple[Node, ...]], None] | None = None


def set_debug_hooks(
    on_create: Callable[[Node], None] | None = None,
    on_dependencies: Callable[[Node, tuple[Node, ...]], None] | None = None,
) -> None:
    """Install (or with no arguments, remove) the process-wide debug hooks."""
    global _on_create, _on_dependencies
    _on_create = on_create
    _on_dependencies = on_dependencies


class Node(Generic[T]):
    """Base node: state, change detection, listeners, lifecycle."""

    __slots__ = (
        "__weakref__",
        "_name",
        "_options",
        "_listeners",
        "_valid",
        "_value",
        "_error",
        "_key",
        "_notified_key",
        "_waiters",
        "_attached",
        "_closed",
    )

    def __init__(self, *, name: str | None = None, **options: Any) -> None:
        self._name = name
        self._options: NodeOptions = get_defaults().merged(options)
        self._listeners = ListenerSet(on_empty=self._on_last_listener)
        self._valid = False
        self._value: Any = None
        self._error: BaseException | None = None
        self._key: Any = _NEVER
        self._notified_key: Any = _NEVER
        # Readers that saw this node invalid. The next valid state wakes them
        # even if its hash matches what listeners last heard.
        self._waiters: dict[Callable[[], None], None] = {}
        self._attached = False
        self._closed = False
        if _on_create is not None:
            _on_create(self)

    # --- Introspection ---

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def options(self) -> NodeOptions:
        return self._options

    @property
    def is_valid(self) -> bool:
        return self._valid

    @property
    def is_attached(self) -> bool:
        return self._attached

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @property
    def value(self) -> T:
        """The current value. Raises the stored error, or NotReadyError if invalid."""
        if not self._valid:
            raise NotReadyError(f"{self!r} has no valid state yet")
        if self._error is not None:
            # Drop the traceback of earlier reads so it doesn't grow per read.
            raise self._error.with_traceback(None)
        return self._value

    @property
    def error(self) -> BaseException | None:
        """The stored error, or None if the node holds a value or is invalid."""
        return self._error if self._valid else None

    # --- Reporting ---

    def report(self, error: BaseException | None, value: Any = None, force_notify: bool = False) -> None:
        """Store a new valid state and notify listeners if it changed.

        Errors and values are hashed in separate channels, so an error never
        equals a value. A hash failure counts as a change.
        """
        if self._closed:
            raise ClosedError(f"cannot report to closed {self!r}")
        self._store(error, value, self._state_key(error, value), force_notify)

    def _state_key(self, error: BaseException | None, value: Any) -> Any:
        try:
            if error is not None:
                return ("error", self._options.hash_fn(error))
            return ("value", self._options.hash_fn(value))
        except Exception:
            logger.debug("hash failed for %r, treating state as changed", self, exc_info=True)
            return _UNHASHABLE

    def _store(self, error: BaseException | None, value: Any, key: Any, force_notify: bool) -> None:
        self._valid = True
        self._error = error
        self._value = None if error is not None else value
        self._key = key

        mode = self._options.notify
        changed = key is _UNHASHABLE or key != self._notified_key
        if force_notify or mode == "always" or (mode == "auto" and changed):
            # Waiting readers are listeners too; the broadcast reaches them.
            self._waiters.clear()
            self._notified_key = key
            self._broadcast()
        else:
            self._wake_waiters()

    def _broadcast(self) -> None:
        # One batch per broadcast: dependents queue up and run after every
        # listener has heard, instead of one dependent running mid-broadcast.
        begin_batch()
        try:
            self._listeners.notify()
        finally:
            end_batch()

    def _wake_waiters(self) -> None:
        """Call the readers waiting for validity, and only them."""
        if not self._waiters:
            return
        waiters = list(self._waiters)
        self._waiters.clear()
        begin_batch()
        try:
            for waiter in waiters:
                waiter()
        finally:
            end_batch()

    def _invalidate_state(self) -> None:
        self._valid = False
        self._value = None
        self._error = None

    def _read_tracked(self, waiter: Callable[[], None] | None = None) -> BaseException | None:
        """Called by a dependency collector. Returns the error, or raises Defer if invalid.

        waiter, if given, is called once this node next becomes valid.
        """
        if not self._valid:
            if waiter is not None:
                self._waiters[waiter] = None
            raise Defer
        return self._error

    # --- Listeners ---

    def subscribe(self, callback: Callable[[], None], on_close: Callable[[], None] | None = None) -> Subscription:
        """Register callback for change notifications. Attaches the node if detached.

        on_close, if given, is called once when this node closes.
        """
        if self._closed:
            raise ClosedError(f"cannot subscribe to closed {self!r}")
        subscription = self._listeners.add(callback, on_close)
        if not self._attached:
            self.attach()
        return subscription

    def _on_last_listener(self) -> None:
        if self._closed:
            return
        if self._options.autoclose:
            self.close()
        elif not self._options.persist:
            self.detach()

    # --- Lifecycle ---

    def attach(self) -> None:
        """Start tracking dependencies. Idempotent."""
        if self._closed:
            raise ClosedError(f"cannot attach closed {self!r}")
        if self._attached:
            return
        self._attached = True
        logger.debug("attached %r", self)
        self._on_attach()

    def detach(self) -> None:
        """Release dependency subscriptions. Idempotent."""
        if not self._attached:
            return
        self._attached = False
        logger.debug("detached %r", self)
        self._on_detach()
        if self._options.on_detach is not None:
            self._options.on_detach()

    def close(self) -> None:
        """Detach for good and store a terminal ClosedError. Idempotent.

        Listeners' on_close callbacks fire; dependent nodes close in turn.
        """
        if self._closed:
            return
        self.detach()
        self._closed = True
        self._waiters.clear()
        self._valid = True
        self._value = None
        self._error = ClosedError(f"{self._label()} is closed")
        logger.debug("closed %r", self)
        self._listeners.close_all()

    def invalidate(self, force_notify: bool = False) -> None:
        """Request re-evaluation. Raises ClosedError on a closed node."""
        if self._closed:
            raise ClosedError(f"cannot invalidate closed {self!r}")

    def _on_attach(self) -> None:
        pass

    def _on_detach(self) -> None:
        pass

    def _run(self) -> None:
        """Called by the scheduler."""

    # --- Awaiting ---

    async def wait(self) -> T:
        """Return the value once the node is valid. Raises its error, or ClosedError."""
        if self._closed:
            raise ClosedError(f"cannot wait on closed {self!r}")
        if self._valid:
            return self.value

        future = asyncio.get_running_loop().create_future()

        def settle() -> None:
            if future.done() or not self._valid:
                return
            if self._error is not None:
                future.set_exception(self._error)
            else:
                future.set_result(self._value)

        def closed() -> None:
            if not future.done():
                future.set_exception(ClosedError(f"{self._label()} closed while awaited"))

        # Leave the node as attached as it was found: only a node this wait
        # pulled into attachment may detach again when it finishes.
        pulled = not self._attached
        self._waiters[settle] = None
        subscription = self.subscribe(settle, on_close=closed)
        settle()
        try:
            return await future
        finally:
            self._waiters.pop(settle, None)
            subscription.remove(keep_alive=not pulled)

    def __await__(self):
        return self.wait().__await__()

    # --- Chaining ---

    def pipe(self, fn: Callable[[T], Any], **options: Any) -> Node:
        """A node computing fn(value) from this node's value. Errors pass through."""
        from rivulet.combinators import pipe

        return pipe(self, fn, **options)

    def catch(self, handler: Callable[[BaseException], Any], **options: Any) -> Node:
        """A node passing values through and replacing errors with handler(error)."""
        from rivulet.combinators import catch

        return catch(self, handler, **options)

    def flatten(self, **options: Any) -> Node:
        """A node mirroring this one, unwrapping node values recursively."""
        from rivulet.combinators import flatten

        return flatten(self, **options)

    # --- Repr ---

    def _label(self) -> str:
        return self._name or f"{type(self).__name__.lower()}@{id(self):x}"

    def _describe_state(self) -> str:
        if self._closed:
            return "closed"
        if not self._valid:
            return "invalid"
        if self._error is not None:
            return f"error={self._error!r}"
        return f"value={self._value!r}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._label()}, {self._describe_state()})"
