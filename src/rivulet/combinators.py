"""Combinators: common shapes of Derived, built from ordinary compute functions.

Each returns a new Derived; keyword options are passed through to it.
"""

from __future__ import annotations

from typing import Any, Callable

from rivulet._tracking import Dependencies
from rivulet.derived import Derived
from rivulet.node import Node


def pipe(node: Node, fn: Callable[[Any], Any], **options: Any) -> Derived:
    """fn(value) of node. An error in node passes through untouched.

    fn may return a plain value, an awaitable, or a node to mirror.
    """

    def compute(deps: Dependencies) -> Any:
        return fn(deps.read(node))

    options.setdefault("name", getattr(fn, "__name__", None))
    return Derived(compute, **options)


def catch(node: Node, handler: Callable[[BaseException], Any], **options: Any) -> Derived:
    """Values of node pass through; errors are replaced by handler(error)."""

    def compute(deps: Dependencies) -> Any:
        error = deps.error(node)
        if error is None:
            return deps.read(node)
        return handler(error)

    options.setdefault("name", getattr(handler, "__name__", None))
    return Derived(compute, **options)


def flatten(node: Node, **options: Any) -> Derived:
    """Mirror node, following node-valued states down to a plain value or error."""
    return Derived(lambda deps: node, **options)


def combine(*nodes: Node, **options: Any) -> Derived:
    """A tuple of every node's value, once all are valid. The first error wins."""

    def compute(deps: Dependencies) -> tuple:
        # Register all first so every input attaches, not just the first invalid one.
        deps.add(*nodes)
        return tuple(deps.read(node) for node in nodes)

    return Derived(compute, **options)


def const(value: Any, **options: Any) -> Derived:
    """A node that always holds value."""
    return Derived(lambda deps: value, **options)


def failed(error: BaseException, **options: Any) -> Derived:
    """A node that always holds error."""

    def compute(deps: Dependencies) -> Any:
        raise error

    return Derived(compute, **options)
