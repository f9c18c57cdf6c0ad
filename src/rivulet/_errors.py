"""Rivulet error hierarchy.

All library errors inherit from RivuletError for easy catching. Defer is the
odd one out: it is a control signal, not an error, and derives from
BaseException so that ``except Exception`` inside a compute cannot eat it.
"""


class RivuletError(Exception):
    """Base error for all rivulet operations."""


class ClosedError(RivuletError):
    """Attempted to report to, attach, subscribe to or re-evaluate a closed node."""


class NotReadyError(RivuletError):
    """Read the value of a node that has no valid state yet."""


class HashError(RivuletError):
    """A value could not be structurally hashed."""

    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class Defer(BaseException):
    """Raise inside a compute function to abort without reporting.

    The node keeps its previous state and waits for a dependency to change.
    Reading an invalid node through the dependency collector raises this.
    """
