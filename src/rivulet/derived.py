"""Derived nodes: state computed from other nodes.

A Derived wraps a compute function. Each evaluation hands the function a
fresh Dependencies collector; every node it registers is subscribed to as
soon as it is registered, reusing the subscription already held for that
node. When the evaluation settles, subscriptions the new round didn't
register are released. Shared dependencies therefore never drop to zero
listeners between two evaluations.

Evaluations settle three ways:
- a value: reported, and listeners hear about it if its hash changed;
- an error: reported the same way, dependencies still installed so a later
  change can retry;
- Defer: nothing reported, the previous state restored, and the new
  dependencies merged into the held set so the evaluation resumes when one
  of them changes.

A compute may be async. Its coroutine runs as a task on the running loop
and the node stays "pending" until it settles; see NodeOptions.overlap for
what happens to invalidations that arrive meanwhile.

When a compute returns a node, the Derived mirrors it: the returned node's
states are forwarded as if they were its own, without re-running compute,
until a new evaluation returns something else.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from rivulet import node as _node
from rivulet._errors import ClosedError, Defer, RivuletError
from rivulet._listeners import Subscription
from rivulet._tracking import Dependencies, begin_batch, end_batch, schedule
from rivulet.node import Node

T = TypeVar("T")

Compute = Callable[[Dependencies], Any]

logger = logging.getLogger(__name__)

# (valid, error, value, key) as it was before an evaluation started.
Snapshot = tuple[bool, "BaseException | None", Any, Any]


class Derived(Node[T]):
    """A node whose state is the result of a compute function."""

    __slots__ = (
        "_compute",
        "_subscriptions",
        "_dependency_nodes",
        "_round",
        "_collector",
        "_snapshot",
        "_mirrors",
        "_walking",
        "_rewalk",
        "_pending",
        "_rerun",
        "_force_next",
        "_task",
    )

    def __init__(
        self,
        compute: Compute,
        *,
        detached: bool = False,
        name: str | None = None,
        **options: Any,
    ) -> None:
        super().__init__(name=name, **options)
        self._compute = compute
        # Live subscriptions to the dependencies of the last settled evaluation.
        self._subscriptions: dict[Node, Subscription] = {}
        # Remembered across detach so attach() can re-subscribe first.
        self._dependency_nodes: tuple[Node, ...] = ()
        # Subscriptions registered by the evaluation in flight.
        self._round: dict[Node, Subscription] = {}
        self._collector: Dependencies | None = None
        self._snapshot: Snapshot = (False, None, None, None)
        # Forwarding chain: link 0 is the node compute returned, each further
        # link is a node found as the previous link's value.
        self._mirrors: list[tuple[Node, Subscription]] = []
        self._walking = False
        self._rewalk = False
        self._pending = False
        self._rerun = False
        self._force_next = False
        self._task: asyncio.Task | None = None
        if not detached:
            self.attach()

    @property
    def dependencies(self) -> tuple[Node, ...]:
        """Nodes the last settled evaluation depended on."""
        return self._dependency_nodes

    @property
    def mirrored(self) -> Node | None:
        """The node whose state is currently forwarded, if any."""
        return self._mirrors[-1][0] if self._mirrors else None

    @property
    def is_pending(self) -> bool:
        return self._pending

    # --- Lifecycle ---

    def _on_attach(self) -> None:
        begin_batch()
        try:
            for dependency in self._dependency_nodes:
                subscription = self._subscribe_to(dependency)
                if subscription is None:
                    return
                self._subscriptions[dependency] = subscription
            if not self._valid:
                schedule(self)
        finally:
            end_batch()

    def _on_detach(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, {}
        self._invalidate_state()
        # Whoever attaches next hears the first state, even if it repeats.
        self._notified_key = _node._NEVER
        self._drop_mirrors()
        for subscription in subscriptions.values():
            subscription.remove()

    def invalidate(self, force_notify: bool = False) -> None:
        """Re-run compute. With force_notify, listeners hear the result even if unchanged."""
        super().invalidate(force_notify)
        if force_notify:
            self._force_next = True
        if self._attached:
            schedule(self)

    def _subscribe_to(self, dependency: Node) -> Subscription | None:
        """Subscribe to a dependency. A closed dependency closes this node; returns None."""
        try:
            return dependency.subscribe(self._on_dependency_change, on_close=self.close)
        except ClosedError:
            logger.debug("%r depends on closed %r", self, dependency)
            self.close()
            return None

    def _on_dependency_change(self) -> None:
        if self._attached and not self._closed:
            schedule(self)

    # --- Evaluation ---

    def _run(self) -> None:
        if self._closed or not self._attached:
            return
        if self._pending:
            if self._options.overlap == "coalesce":
                self._rerun = True
            else:
                logger.warning("dropped invalidation of %r: an evaluation is already pending", self)
            return
        self._evaluate()

    def _evaluate(self) -> None:
        self._pending = True
        self._rerun = False
        self._snapshot = (self._valid, self._error, self._value, self._key)
        # Readers see "not ready" rather than a stale value while computing.
        self._invalidate_state()
        self._round = {}
        collector = self._collector = Dependencies(self._track, self._on_dependency_change)
        logger.debug("evaluating %r", self)

        try:
            result = self._compute(collector)
        except Defer:
            self._settle_deferred()
            return
        except Exception as exc:
            self._settle(error=exc)
            return

        if isinstance(result, Node) or not inspect.isawaitable(result):
            self._settle(value=result)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(result):
                result.close()
            self._settle(error=RivuletError(f"{self._label()}: async compute needs a running event loop"))
            return
        self._task = loop.create_task(self._drive(result))
        self._task.add_done_callback(self._task_done)

    async def _drive(self, awaitable: Awaitable[Any]) -> None:
        try:
            result = await awaitable
        except Defer:
            self._settle_deferred()
        except asyncio.CancelledError:
            self._settle_deferred()
            raise
        except Exception as exc:
            self._settle(error=exc)
        else:
            self._settle(value=result)
        finally:
            # A follow-up evaluation may already have started its own task.
            if self._task is asyncio.current_task():
                self._task = None

    def _task_done(self, task: asyncio.Task) -> None:
        # A listener that raised while this task settled has no caller to
        # propagate to. Retrieve the error and log it.
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("listener of %r raised during an async settle", self, exc_info=error)

    def _track(self, dependency: Node) -> None:
        subscription = self._subscriptions.get(dependency)
        if subscription is None or not subscription.active:
            subscription = self._subscribe_to(dependency)
            if subscription is None:
                raise Defer
        self._round[dependency] = subscription

    def _end_round(self) -> dict[Node, Subscription]:
        self._pending = False
        if self._collector is not None:
            self._collector._seal()
            self._collector = None
        round_, self._round = self._round, {}
        return round_

    def _settle(self, error: BaseException | None = None, value: Any = None) -> None:
        round_ = self._end_round()
        if self._closed or not self._attached:
            self._release(round_)
            return
        self._install(round_)
        if self._closed:
            return
        if self._rerun:
            # Out of date before it finished: keep the previous state and go again.
            logger.debug("discarding stale result of %r", self)
            self._restore(wake=False)
            schedule(self)
            return

        force, self._force_next = self._force_next, False
        if error is not None:
            logger.debug("%r settled with error %r", self, error)
            self.report(error, None, force)
            self._drop_mirrors()
        elif isinstance(value, Node):
            self._force_next = force
            self._walk(value)
        else:
            logger.debug("%r settled", self)
            self.report(None, value, force)
            self._drop_mirrors()

    def _settle_deferred(self) -> None:
        round_ = self._end_round()
        if self._closed or not self._attached:
            self._release(round_)
            return
        logger.debug("%r deferred", self)
        self._install(round_, merge=True)
        if self._closed:
            return
        if self._rerun:
            self._restore(wake=False)
            schedule(self)
        elif self._mirrors:
            self._walk(self._mirrors[0][0])
        else:
            self._restore(wake=True)

    def _restore(self, wake: bool) -> None:
        valid, error, value, key = self._snapshot
        if not valid:
            return
        self._valid = True
        self._error = error
        self._value = value
        self._key = key
        if wake:
            # Unchanged state: only readers that deferred on this node hear about it.
            self._wake_waiters()

    def _release(self, round_: dict[Node, Subscription]) -> None:
        for dependency, subscription in round_.items():
            if self._subscriptions.get(dependency) is not subscription:
                subscription.remove()

    def _install(self, round_: dict[Node, Subscription], merge: bool = False) -> None:
        """Make round_ the held subscription set: new ones are live already, stale ones go last."""
        fresh: dict[Node, Subscription] = {}
        for dependency, subscription in round_.items():
            if not subscription.active:
                # Dropped by a detach/attach cycle while the evaluation was in flight.
                held = self._subscriptions.get(dependency)
                if held is not None and held.active:
                    subscription = held
                else:
                    subscription = self._subscribe_to(dependency)
                    if subscription is None:
                        break
            fresh[dependency] = subscription
        if self._closed:
            for subscription in fresh.values():
                subscription.remove()
            return

        if merge:
            for dependency, subscription in self._subscriptions.items():
                fresh.setdefault(dependency, subscription)
        stale = [
            subscription
            for dependency, subscription in self._subscriptions.items()
            if fresh.get(dependency) is not subscription
        ]
        self._subscriptions = fresh
        self._dependency_nodes = tuple(fresh)
        for subscription in stale:
            subscription.remove()

        if self._options.on_dependencies is not None:
            self._options.on_dependencies(self, self._dependency_nodes)
        if _node._on_dependencies is not None:
            _node._on_dependencies(self, self._dependency_nodes)

    # --- Mirroring ---

    def _on_link_change(self) -> None:
        # Mid-evaluation forwards are ignored; the evaluation re-walks when it settles.
        if self._pending or self._closed or not self._attached or not self._mirrors:
            return
        self._walk(self._mirrors[0][0])

    def _walk(self, head: Node) -> None:
        """Follow the chain from head to a plain state and forward it."""
        if self._walking:
            self._rewalk = True
            return
        self._walking = True
        begin_batch()
        try:
            self._rewalk = True
            while self._rewalk and not self._closed and self._attached:
                self._rewalk = False
                self._walk_once(head)
        finally:
            self._walking = False
            end_batch()

    def _walk_once(self, head: Node) -> None:
        held = {id(link): subscription for link, subscription in self._mirrors}
        chain: list[tuple[Node, Subscription]] = []
        visited = {id(self)}
        link = head
        cycle = False
        while True:
            if id(link) in visited:
                cycle = True
                break
            visited.add(id(link))
            subscription = held.get(id(link))
            if subscription is None or not subscription.active:
                try:
                    subscription = link.subscribe(self._on_link_change, on_close=self.close)
                except ClosedError:
                    self._release_links(chain, held)
                    self.close()
                    return
            chain.append((link, subscription))
            if link._valid and link._error is None and isinstance(link._value, Node):
                link = link._value
                continue
            break

        previous, self._mirrors = self._mirrors, chain
        kept = {id(subscription) for _, subscription in chain}
        for _, subscription in previous:
            if id(subscription) not in kept:
                subscription.remove()
        if previous and previous[0][0] is not head:
            logger.debug("%r now mirrors %r", self, head)

        if self._closed:
            return
        force, self._force_next = self._force_next, False
        if cycle:
            self.report(RivuletError(f"{self._label()} mirrors a cycle of nodes"), None, force)
            return
        terminal = chain[-1][0]
        if terminal._valid:
            self._store(terminal._error, terminal._value, terminal._key, force)
        else:
            self._force_next = force
            self._invalidate_state()

    def _release_links(self, chain: list[tuple[Node, Subscription]], held: dict[int, Subscription]) -> None:
        for link, subscription in chain:
            if held.get(id(link)) is not subscription:
                subscription.remove()

    def _drop_mirrors(self) -> None:
        mirrors, self._mirrors = self._mirrors, []
        for _, subscription in mirrors:
            subscription.remove()

    def __repr__(self) -> str:
        state = "pending" if self._pending else self._describe_state()
        return f"Derived({self._label()}, {state})"

    def _label(self) -> str:
        return self._name or getattr(self._compute, "__name__", None) or super()._label()


def derive(fn: Compute | None = None, **options: Any):
    """Decorator/factory to create a Derived from a compute function.

    Usage:
        a = Source(1)

        @derive
        def b(deps):
            return deps.read(a) + 1

        b.value  # 2

        @derive(overlap="drop")
        async def fetched(deps):
            ...
    """
    if fn is None:
        return lambda f: Derived(f, **options)
    return Derived(fn, **options)
