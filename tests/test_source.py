"""Tests for Source and the reporting path it shares with every node."""

import threading

import pytest

import rivulet.source as _source_mod
from rivulet import ClosedError, NotReadyError, Source


def _counting(node):
    log = []
    node.subscribe(lambda: log.append(node.value if node.error is None else node.error))
    return log


class TestSource:
    def test_get_set(self):
        s = Source(42)
        assert s.value == 42
        s.set(100)
        assert s.value == 100

    def test_unset_source_is_not_ready(self):
        s = Source()
        assert not s.is_valid
        with pytest.raises(NotReadyError):
            s.value

    def test_dedup(self):
        """Setting a structurally equal value notifies nobody."""
        s = Source({"a": [1, 2]})
        log = _counting(s)
        s.set({"a": [1, 2]})
        assert log == []
        s.set({"a": [1, 3]})
        assert log == [{"a": [1, 3]}]

    def test_first_report_always_notifies(self):
        s = Source()
        log = _counting(s)
        s.set(None)
        assert log == [None]

    def test_force_notify(self):
        s = Source(1)
        log = _counting(s)
        s.set(1, force_notify=True)
        assert log == [1]

    def test_in_place_mutation_is_a_change(self):
        items = [1]
        s = Source(items)
        log = _counting(s)
        items.append(2)
        s.set(items)
        assert log == [[1, 2]]

    def test_error_and_value_channels_differ(self):
        """An error payload never equals a value payload."""
        boom = ValueError("boom")
        s = Source()
        log = _counting(s)
        s.set_error(boom)
        s.set(boom)
        assert len(log) == 2
        assert s.error is None
        assert s.value is boom

    def test_equal_errors_are_deduplicated(self):
        s = Source()
        log = _counting(s)
        s.set_error(ValueError("x"))
        s.set_error(ValueError("x"))
        assert len(log) == 1
        with pytest.raises(ValueError, match="x"):
            s.value

    def test_unset_does_not_notify(self):
        s = Source(1)
        log = _counting(s)
        s.unset()
        assert log == []
        assert not s.is_valid

    def test_hash_failure_always_notifies(self):
        def boom(value):
            raise TypeError("no hashing today")

        s = Source(1, hash_fn=boom)
        log = _counting(s)
        s.set(1)
        s.set(1)
        assert log == [1, 1]

    def test_notify_never_only_on_force(self):
        s = Source(1, notify="never")
        log = _counting(s)
        s.set(2)
        s.set(1, force_notify=True)
        assert log == [1]
        s.set(1)
        assert log == [1]

    def test_invalidate_force_rebroadcasts(self):
        s = Source(1)
        log = _counting(s)
        s.invalidate()
        assert log == []
        s.invalidate(force_notify=True)
        assert log == [1]

    def test_notify_always(self):
        s = Source(1, notify="always")
        log = _counting(s)
        s.set(1)
        assert log == [1]

    def test_repr(self):
        assert repr(Source(5)) == "Source(5)"
        assert repr(Source()) == "Source(<unset>)"
        assert repr(Source(5, name="width")) == "Source(width, 5)"


class TestSourceLifecycle:
    def test_detach_keeps_state(self):
        detaches = []
        s = Source(1, on_detach=lambda: detaches.append(1))
        sub = s.subscribe(lambda: None)
        sub.remove()
        assert detaches == [1]
        assert not s.is_attached
        assert s.value == 1

    def test_closed_source_rejects_writes(self):
        s = Source(1)
        s.close()
        with pytest.raises(ClosedError):
            s.set(2)
        with pytest.raises(ClosedError):
            s.unset()
        with pytest.raises(ClosedError):
            s.value


def _with_scheduler(scheduler):
    """Install scheduler for the current thread; returns a restore function."""
    old_sched, old_thread = _source_mod._scheduler, _source_mod._scheduler_thread
    _source_mod._scheduler = scheduler
    _source_mod._scheduler_thread = threading.current_thread()

    def restore():
        _source_mod._scheduler = old_sched
        _source_mod._scheduler_thread = old_thread

    return restore


class TestAutoMarshal:
    """Source.set() auto-marshals from background threads."""

    def test_owner_thread_is_synchronous(self):
        calls = []
        restore = _with_scheduler(lambda f: (calls.append(f), f()))
        try:
            s = Source(0)
            s.set(42)
            assert s.value == 42
            assert calls == []
        finally:
            restore()

    def test_background_thread_marshals(self):
        calls = []
        restore = _with_scheduler(lambda f: (calls.append(f), f()))
        try:
            s = Source(0)
            done = threading.Event()

            def bg():
                s.set(99)
                s.set_error(ValueError("bg"))
                done.set()

            threading.Thread(target=bg).start()
            done.wait(timeout=2)
            assert len(calls) == 2
            assert isinstance(s.error, ValueError)
        finally:
            restore()

    def test_no_scheduler_is_direct(self):
        restore = _with_scheduler(None)
        try:
            s = Source(0)
            t = threading.Thread(target=lambda: s.set(7))
            t.start()
            t.join()
            assert s.value == 7
        finally:
            restore()

    def test_set_scheduler_none_disables(self):
        _source_mod.set_scheduler(lambda f: None)
        _source_mod.set_scheduler(None)
        assert _source_mod._scheduler is None
        assert _source_mod._scheduler_thread is None
