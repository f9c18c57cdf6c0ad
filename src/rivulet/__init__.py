"""Rivulet: a reactive computation-graph engine for Python."""

from importlib.metadata import version as _version

__version__ = _version("rivulet")

from rivulet._errors import RivuletError, ClosedError, NotReadyError, HashError, Defer
from rivulet._hash import structural_hash
from rivulet._listeners import ListenerSet, Subscription
from rivulet._tracking import Dependencies, action, get_pending_count, transaction
from rivulet.config import NodeOptions, configure, get_defaults, reset_defaults
from rivulet.node import Node
from rivulet.derived import Derived, derive
from rivulet.source import Source, set_scheduler
from rivulet.combinators import pipe, catch, flatten, combine, const, failed
from rivulet.reaction import Reaction, autorun, reaction
# debug is opt-in, not auto-imported

__all__ = [
    "RivuletError",
    "ClosedError",
    "NotReadyError",
    "HashError",
    "Defer",
    "structural_hash",
    "ListenerSet",
    "Subscription",
    "Dependencies",
    "get_pending_count",
    "NodeOptions",
    "configure",
    "get_defaults",
    "reset_defaults",
    "Node",
    "Derived",
    "derive",
    "Source",
    "set_scheduler",
    "pipe",
    "catch",
    "flatten",
    "combine",
    "const",
    "failed",
    "action",
    "transaction",
    "Reaction",
    "autorun",
    "reaction",
]
