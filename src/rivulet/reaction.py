"""Reactions: side effects at the edge of the graph.

A node only computes; a Reaction is what finally does something with its
states. It holds one subscription, which keeps the node attached for as long
as the reaction lives. dispose() drops the subscription, so a node nobody
else listens to detaches and releases its own dependencies in turn.

Two flavors:
- autorun(fn): fn(deps) runs now and again whenever what it read changes.
- reaction(source, effect): effect(value) runs whenever source notifies.
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from rivulet._listeners import Subscription
from rivulet._tracking import Dependencies
from rivulet.derived import Derived
from rivulet.node import Node

T = TypeVar("T")


class Reaction:
    """Subscription of an effect to a node's notifications."""

    __slots__ = ("_node", "_effect", "_on_error", "_owns_node", "_subscription")

    def __init__(
        self,
        node: Node,
        effect: Callable[[Any], None] | None,
        on_error: Callable[[BaseException], None] | None = None,
        *,
        owns_node: bool = False,
    ) -> None:
        self._node = node
        self._effect = effect
        self._on_error = on_error
        self._owns_node = owns_node
        self._subscription: Subscription | None = node.subscribe(self._fire, on_close=self._closed)

    @property
    def node(self) -> Node:
        return self._node

    @property
    def disposed(self) -> bool:
        return self._subscription is None

    def _fire(self) -> None:
        node = self._node
        if not node.is_valid:
            return
        if node.error is not None:
            if self._on_error is not None:
                self._on_error(node.error)
        elif self._effect is not None:
            self._effect(node.value)

    def _closed(self) -> None:
        self._subscription = None

    def dispose(self) -> None:
        """Stop reacting. Closes the node too if this reaction created it."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.remove()
        if self._owns_node:
            self._node.close()

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "active"
        return f"Reaction({self._node!r}, {state})"


def autorun(
    fn: Callable[[Dependencies], Any],
    *,
    on_error: Callable[[BaseException], None] | None = None,
    **options: Any,
) -> Reaction:
    """Run fn(deps) immediately, then again whenever a node it read changes.

    Exceptions from fn are stored on the underlying node, not raised; pass
    on_error to hear about them. Returns the Reaction (call .dispose() to stop).

    Usage:
        counter = Source(0)
        log = []

        r = autorun(lambda deps: log.append(deps.read(counter)))
        # log == [0]

        counter.set(1)
        # log == [0, 1]

        r.dispose()
        counter.set(2)
        # log == [0, 1]
    """
    # notify="always": fn returning None every time must not mute on_error.
    options.setdefault("notify", "always")
    node = Derived(fn, **options)
    r = Reaction(node, None, on_error, owns_node=True)
    if node.is_valid and node.error is not None and on_error is not None:
        on_error(node.error)
    return r


def reaction(
    source: Node[T] | Callable[[Dependencies], T],
    effect: Callable[[T], None],
    *,
    fire_immediately: bool = False,
    on_error: Callable[[BaseException], None] | None = None,
    **options: Any,
) -> Reaction:
    """Call effect(value) each time source notifies a changed value.

    source is a node, or a compute function to wrap in a Derived owned by
    the reaction. A source that has no value yet fires the effect when its
    first value arrives, fire_immediately or not.

    Usage:
        first = Source("Alice")
        last = Source("Smith")

        effects = []
        r = reaction(
            lambda deps: f"{deps.read(first)} {deps.read(last)}",
            effects.append,
        )
        # effects == []

        first.set("Bob")
        # effects == ["Bob Smith"]

        r.dispose()
    """
    owns_node = not isinstance(source, Node)
    node = Derived(source, **options) if owns_node else source
    r = Reaction(node, effect, on_error, owns_node=owns_node)
    if fire_immediately:
        r._fire()
    return r
