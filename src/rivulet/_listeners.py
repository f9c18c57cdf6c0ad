"""Listener registry: subscribe, unsubscribe, broadcast.

A ListenerSet holds callbacks keyed by their Subscription handle. notify()
broadcasts to a snapshot taken when it starts, so callbacks added or removed
mid-broadcast don't change who receives it. When the last subscription is
removed, the optional on_empty hook fires; that is what drives auto-detach.
"""

from __future__ import annotations

from typing import Callable

Listener = Callable[[], None]


class Subscription:
    """Handle for one registered listener. remove() is idempotent."""

    __slots__ = ("_registry", "callback", "on_close")

    def __init__(self, registry: ListenerSet, callback: Listener, on_close: Listener | None) -> None:
        self._registry: ListenerSet | None = registry
        self.callback = callback
        self.on_close = on_close

    @property
    def active(self) -> bool:
        return self._registry is not None

    def remove(self, *, keep_alive: bool = False) -> None:
        """Detach this listener.

        With keep_alive=True the registry's on_empty hook is not fired even if
        this was the last listener.
        """
        registry, self._registry = self._registry, None
        if registry is not None:
            registry._discard(self, keep_alive)

    def __repr__(self) -> str:
        state = "active" if self.active else "removed"
        return f"Subscription({getattr(self.callback, '__name__', self.callback)!r}, {state})"


class ListenerSet:
    """Generic listener registry with a hook for reaching zero listeners."""

    __slots__ = ("_subscriptions", "_on_empty")

    def __init__(self, on_empty: Callable[[], None] | None = None) -> None:
        self._subscriptions: dict[Subscription, None] = {}
        self._on_empty = on_empty

    def add(self, callback: Listener, on_close: Listener | None = None) -> Subscription:
        subscription = Subscription(self, callback, on_close)
        self._subscriptions[subscription] = None
        return subscription

    def notify(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.callback()

    def close_all(self) -> None:
        """Drop every subscription and fire their on_close callbacks.

        on_empty is not fired: the owner is going away, not going idle.
        """
        closing = list(self._subscriptions)
        self._subscriptions.clear()
        for subscription in closing:
            subscription._registry = None
        for subscription in closing:
            if subscription.on_close is not None:
                subscription.on_close()

    def _discard(self, subscription: Subscription, keep_alive: bool) -> None:
        if subscription not in self._subscriptions:
            return
        del self._subscriptions[subscription]
        if not self._subscriptions and not keep_alive and self._on_empty is not None:
            self._on_empty()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __bool__(self) -> bool:
        return bool(self._subscriptions)
