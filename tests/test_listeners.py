"""Tests for ListenerSet and Subscription."""

from rivulet import ListenerSet


class TestNotify:
    def test_calls_every_listener(self):
        listeners = ListenerSet()
        log = []
        listeners.add(lambda: log.append("a"))
        listeners.add(lambda: log.append("b"))
        listeners.notify()
        assert log == ["a", "b"]

    def test_removed_listener_not_called(self):
        listeners = ListenerSet()
        log = []
        sub = listeners.add(lambda: log.append("a"))
        sub.remove()
        listeners.notify()
        assert log == []
        assert not sub.active

    def test_removal_mid_broadcast_does_not_affect_it(self):
        """A listener removed by an earlier one in the same broadcast still runs."""
        listeners = ListenerSet()
        log = []
        second = None

        def first():
            log.append("first")
            second.remove()

        listeners.add(first)
        second = listeners.add(lambda: log.append("second"))
        listeners.notify()
        assert log == ["first", "second"]

        listeners.notify()
        assert log == ["first", "second", "first"]

    def test_addition_mid_broadcast_waits_for_next(self):
        listeners = ListenerSet()
        log = []

        def adder():
            log.append("adder")
            listeners.add(lambda: log.append("late"))

        listeners.add(adder)
        listeners.notify()
        assert log == ["adder"]


class TestOnEmpty:
    def test_fires_when_last_listener_removed(self):
        calls = []
        listeners = ListenerSet(on_empty=lambda: calls.append(1))
        a = listeners.add(lambda: None)
        b = listeners.add(lambda: None)
        a.remove()
        assert calls == []
        b.remove()
        assert calls == [1]

    def test_remove_is_idempotent(self):
        calls = []
        listeners = ListenerSet(on_empty=lambda: calls.append(1))
        sub = listeners.add(lambda: None)
        sub.remove()
        sub.remove()
        assert calls == [1]
        assert len(listeners) == 0

    def test_keep_alive_suppresses_hook(self):
        calls = []
        listeners = ListenerSet(on_empty=lambda: calls.append(1))
        sub = listeners.add(lambda: None)
        sub.remove(keep_alive=True)
        assert calls == []
        assert not listeners


class TestCloseAll:
    def test_fires_on_close_but_not_on_empty(self):
        empties, closes = [], []
        listeners = ListenerSet(on_empty=lambda: empties.append(1))
        sub = listeners.add(lambda: None, on_close=lambda: closes.append("a"))
        listeners.add(lambda: None)
        listeners.close_all()
        assert closes == ["a"]
        assert empties == []
        assert not sub.active
        assert len(listeners) == 0

    def test_remove_after_close_all_is_noop(self):
        empties = []
        listeners = ListenerSet(on_empty=lambda: empties.append(1))
        sub = listeners.add(lambda: None)
        listeners.close_all()
        sub.remove()
        assert empties == []
