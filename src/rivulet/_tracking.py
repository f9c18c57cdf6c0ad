"""Propagation scheduler and dependency collector: the heart of rivulet.

Scheduling: every re-evaluation goes through schedule(). Outside a batch it
opens one, so the node runs before schedule() returns; inside a batch (an
@action, a `with transaction()`, or a broadcast in progress) it is queued and
the queue is drained once when the outermost batch exits. Queued nodes are
deduplicated, so a burst of invalidations costs a single recompute.

Dependency discovery is explicit: each evaluation gets its own Dependencies
collector, passed to the compute function. There is no ambient "current
derivation".
"""

from __future__ import annotations

import logging
from contextlib import ContextDecorator
from typing import TYPE_CHECKING, Any, Callable, ParamSpec, TypeVar

from rivulet._errors import RivuletError

if TYPE_CHECKING:
    from rivulet.node import Node

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)

# Batch depth counter. When > 0, scheduled nodes are queued.
_batch_depth: int = 0

# Nodes awaiting a run, in scheduling order. Dict used as an ordered set.
_pending: dict[Node, None] = {}


def begin_batch() -> None:
    """Enter a batching scope. Nested batches are supported."""
    global _batch_depth
    _batch_depth += 1


def end_batch() -> None:
    """Exit a batching scope. When the outermost scope exits, drain the queue."""
    global _batch_depth
    try:
        if _batch_depth == 1:
            _flush_pending()
    finally:
        _batch_depth -= 1


def schedule(node: Node) -> None:
    """Schedule a node for re-evaluation.

    If inside a batch, defers. Otherwise, runs before returning.
    """
    begin_batch()
    try:
        _pending[node] = None
    finally:
        end_batch()


def _flush_pending() -> None:
    """Run pending nodes in order. Nodes scheduled while draining join the queue.

    A node that raises (a listener failing mid-report) doesn't strand the rest
    of the queue: draining continues, the first error is re-raised at the end
    and any later ones are logged.
    """
    first: Exception | None = None
    try:
        while _pending:
            node = next(iter(_pending))
            del _pending[node]
            try:
                node._run()
            except Exception as exc:
                if first is None:
                    first = exc
                else:
                    logger.error("%r raised while draining the queue", node, exc_info=exc)
    finally:
        _pending.clear()
    if first is not None:
        raise first


def get_pending_count() -> int:
    """Number of nodes waiting to run. Useful for testing."""
    return len(_pending)


class Dependencies:
    """Collects the nodes one evaluation depends on.

    Passed to every compute function. Calling it (or .add) registers nodes;
    .read and .error register a node and unwrap its state, raising Defer if
    the node has no valid state yet. In that case waiter, if given, is called
    once the node becomes valid again.
    """

    __slots__ = ("_track", "_waiter", "_nodes", "_sealed")

    def __init__(self, track: Callable[[Node], None], waiter: Callable[[], None] | None = None) -> None:
        self._track = track
        self._waiter = waiter
        self._nodes: dict[Node, None] = {}
        self._sealed = False

    def add(self, *nodes: Node) -> None:
        if self._sealed:
            raise RivuletError("dependency collector used after its evaluation settled")
        for node in nodes:
            if node not in self._nodes:
                self._nodes[node] = None
                self._track(node)

    __call__ = add

    def read(self, node: Node) -> Any:
        """Register node and return its value, re-raising its error if it holds one."""
        self.add(node)
        error = node._read_tracked(self._waiter)
        if error is not None:
            raise error.with_traceback(None)
        return node._value

    def error(self, node: Node) -> BaseException | None:
        """Register node and return its error, or None if it holds a value."""
        self.add(node)
        return node._read_tracked(self._waiter)

    @property
    def nodes(self) -> tuple[Node, ...]:
        return tuple(self._nodes)

    def _seal(self) -> None:
        self._sealed = True

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"Dependencies({len(self._nodes)} nodes)"


class transaction(ContextDecorator):
    """Batch scope. Nodes scheduled inside it run once, when the outermost scope exits.

    Usage:
        width = Source(2)
        height = Source(3)
        area = Derived(lambda deps: deps.read(width) * deps.read(height))

        with transaction():
            width.set(4)
            height.set(5)
        # area evaluated once, with both writes: 20

    An instance also works as a decorator; see action().
    """

    def __enter__(self) -> transaction:
        begin_batch()
        return self

    def __exit__(self, *exc_info: Any) -> bool:
        end_batch()
        return False


def action(fn: Callable[P, R]) -> Callable[P, R]:
    """Decorator: every call of fn runs inside its own transaction.

        @action
        def resize(w, h):
            width.set(w)
            height.set(h)
    """
    return transaction()(fn)
