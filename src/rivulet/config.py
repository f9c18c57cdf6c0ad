"""Node configuration.

NodeOptions holds the defaults every node starts from. It is frozen; change
the process-wide defaults with configure(), and override per node with the
same field names as keyword arguments.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING, Any, Callable, Literal

from rivulet._hash import structural_hash

if TYPE_CHECKING:
    from rivulet.node import Node

NotifyMode = Literal["auto", "always", "never"]
OverlapPolicy = Literal["coalesce", "drop"]

_NOTIFY_MODES = ("auto", "always", "never")
_OVERLAP_POLICIES = ("coalesce", "drop")


@dataclass(frozen=True, slots=True)
class NodeOptions:
    """Behavior knobs for a node.

    Attributes:
        notify: "auto" notifies when the state's structural hash changes,
            "always" on every report, "never" only when forced.
        overlap: What happens to an invalidation that arrives while an
            evaluation is still pending. "coalesce" runs exactly one
            follow-up once the pending one settles and discards the stale
            result; "drop" ignores the invalidation and logs a warning.
        persist: Stay attached when the last listener goes away.
        autoclose: Close instead of detaching when the last listener goes away.
        hash_fn: Structural hash used for change detection. May raise; a
            failure means "changed".
        on_detach: Called with no arguments after every detach.
        on_dependencies: Called as fn(node, nodes) after every dependency-set
            update. Must not influence propagation.

    """

    notify: NotifyMode = "auto"
    overlap: OverlapPolicy = "coalesce"
    persist: bool = False
    autoclose: bool = False
    hash_fn: Callable[[Any], Any] = structural_hash
    on_detach: Callable[[], None] | None = None
    on_dependencies: Callable[[Node, tuple[Node, ...]], None] | None = None

    def __post_init__(self) -> None:
        if self.notify not in _NOTIFY_MODES:
            raise ValueError(f"notify must be one of {_NOTIFY_MODES}, got {self.notify!r}")
        if self.overlap not in _OVERLAP_POLICIES:
            raise ValueError(f"overlap must be one of {_OVERLAP_POLICIES}, got {self.overlap!r}")
        if not callable(self.hash_fn):
            raise ValueError("hash_fn must be callable")

    def merged(self, overrides: dict[str, Any]) -> NodeOptions:
        """Return a copy with overrides applied. Unknown names raise TypeError."""
        unknown = set(overrides) - _FIELD_NAMES
        if unknown:
            raise TypeError(f"unknown node option(s): {', '.join(sorted(unknown))}")
        return replace(self, **overrides) if overrides else self


_FIELD_NAMES = frozenset(f.name for f in fields(NodeOptions))

_defaults = NodeOptions()


def get_defaults() -> NodeOptions:
    return _defaults


def configure(**changes: Any) -> NodeOptions:
    """Change the defaults for nodes created from now on. Returns the new defaults.

    Usage:
        rivulet.configure(overlap="drop", notify="always")
    """
    global _defaults
    _defaults = _defaults.merged(changes)
    return _defaults


def reset_defaults() -> None:
    """Restore the built-in defaults."""
    global _defaults
    _defaults = NodeOptions()
