"""Debug tracing: where nodes were declared and what they ended up depending on.

Opt-in: call enable() before building the graph. Declaration sites are
captured when nodes are created and dependency sets every time a Derived
installs one, both through the hooks in rivulet.node. Nothing here feeds
back into propagation.

    rivulet.debug.enable()
    ...
    print(rivulet.debug.trace(total))
"""

from __future__ import annotations

import logging
import os
import traceback
import weakref

from rivulet import node as _node
from rivulet.node import Node

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

_declared_at: weakref.WeakKeyDictionary[Node, list[str]] = weakref.WeakKeyDictionary()
_dependencies: weakref.WeakKeyDictionary[Node, tuple[Node, ...]] = weakref.WeakKeyDictionary()


def enable() -> None:
    _node.set_debug_hooks(on_create=_record_declaration, on_dependencies=_record_dependencies)
    logger.info("rivulet debugging enabled")


def disable() -> None:
    _node.set_debug_hooks()
    _declared_at.clear()
    _dependencies.clear()


def is_enabled() -> bool:
    return _node._on_create is _record_declaration


def _user_frames() -> list[str]:
    frames = [
        frame
        for frame in traceback.extract_stack()
        if not os.path.abspath(frame.filename).startswith(_PACKAGE_DIR)
        and not frame.filename.startswith("<")
    ]
    # Innermost call first.
    return [f"{frame.filename}:{frame.lineno} in {frame.name}" for frame in reversed(frames)]


def _record_declaration(node: Node) -> None:
    _declared_at[node] = _user_frames()


def _record_dependencies(node: Node, dependencies: tuple[Node, ...]) -> None:
    _dependencies[node] = dependencies


def declared_at(node: Node) -> list[str]:
    """Stack of user frames that created node, innermost first. Empty if unknown."""
    return list(_declared_at.get(node, ()))


def dependencies_of(node: Node) -> tuple[Node, ...]:
    """The last dependency set recorded for node."""
    return _dependencies.get(node, ())


def _roots(node: Node, seen: set[int]) -> list[Node]:
    if id(node) in seen:
        return []
    seen.add(id(node))
    dependencies = _dependencies.get(node)
    if not dependencies:
        return [node]
    roots: list[Node] = []
    for dependency in dependencies:
        roots.extend(_roots(dependency, seen))
    return roots


def trace(node: Node) -> str:
    """Render node's declaration site and its root dependencies.

    Roots declared at the same site are grouped, with how many of them are
    closed, busiest site first.
    """
    groups: dict[str, list[Node]] = {}
    for root in _roots(node, set()):
        site = declared_at(root)
        groups.setdefault(site[0] if site else "<unknown>", []).append(root)

    site = declared_at(node)
    lines = [f"{node!r} declared at {site[0] if site else '<unknown>'}"]
    lines.extend(f"    {frame}" for frame in site[1:])
    lines.append("Root dependencies:")
    for where, roots in sorted(groups.items(), key=lambda item: -len(item[1])):
        closed = sum(1 for root in roots if root.is_closed)
        if len(roots) > 1:
            state = f"{closed}/{len(roots)} closed"
        else:
            state = "closed" if closed else "open"
        lines.append(f"  - ({state}) {where}")
    return "\n".join(lines)
