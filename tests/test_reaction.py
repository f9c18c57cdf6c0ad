"""Tests for Reaction, autorun, and reaction."""

from rivulet import Derived, Reaction, Source, autorun, reaction


class TestAutorun:
    def test_runs_immediately(self):
        o = Source(10)
        log = []
        autorun(lambda deps: log.append(deps.read(o)))
        assert log == [10]

    def test_reruns_on_change(self):
        o = Source(10)
        log = []
        autorun(lambda deps: log.append(deps.read(o)))
        o.set(20)
        assert log == [10, 20]

    def test_dispose_stops(self):
        o = Source(10)
        log = []
        r = autorun(lambda deps: log.append(deps.read(o)))
        r.dispose()
        o.set(20)
        assert log == [10]  # no additional run
        assert r.disposed
        assert r.node.is_closed
        assert o.listener_count == 0

    def test_waits_for_unset_source(self):
        o = Source()
        log = []
        autorun(lambda deps: log.append(deps.read(o)))
        assert log == []
        o.set("ready")
        assert log == ["ready"]

    def test_on_error(self):
        o = Source(1)
        errors = []

        def check(deps):
            if deps.read(o) < 0:
                raise ValueError("negative")

        autorun(check, on_error=errors.append)
        assert errors == []
        o.set(-1)
        assert [str(e) for e in errors] == ["negative"]

    def test_on_error_for_initial_run(self):
        errors = []

        def broken(deps):
            raise RuntimeError("at once")

        autorun(broken, on_error=errors.append)
        assert [str(e) for e in errors] == ["at once"]


class TestReaction:
    def test_no_initial_effect(self):
        """Without fire_immediately, effect doesn't run on setup."""
        o = Source("a")
        effects = []
        reaction(lambda deps: deps.read(o), effects.append)
        assert effects == []

    def test_fires_on_change(self):
        o = Source("a")
        effects = []
        reaction(lambda deps: deps.read(o), effects.append)
        o.set("b")
        assert effects == ["b"]

    def test_fire_immediately(self):
        o = Source("a")
        effects = []
        reaction(lambda deps: deps.read(o), effects.append, fire_immediately=True)
        assert effects == ["a"]

    def test_dedup_effect(self):
        """Effect only fires when the computed result actually changes."""
        o = Source(1)
        effects = []
        reaction(
            lambda deps: "even" if deps.read(o) % 2 == 0 else "odd",
            effects.append,
        )
        o.set(3)  # still odd
        assert effects == []
        o.set(4)  # now even
        assert effects == ["even"]

    def test_dispose(self):
        o = Source(1)
        effects = []
        r = reaction(lambda deps: deps.read(o), effects.append)
        o.set(2)
        assert effects == [2]
        r.dispose()
        o.set(3)
        assert effects == [2]  # no more effects

    def test_node_source_is_not_owned(self):
        o = Source(1)
        doubled = Derived(lambda deps: deps.read(o) * 2, persist=True)
        effects = []
        r = reaction(doubled, effects.append)
        o.set(2)
        assert effects == [4]
        r.dispose()
        assert not doubled.is_closed
        assert doubled.value == 4

    def test_errors_go_to_on_error(self):
        o = Source(1)
        effects, errors = [], []
        reaction(o, effects.append, on_error=errors.append)
        o.set_error(KeyError("gone"))
        o.set(5)
        assert effects == [5]
        assert len(errors) == 1

    def test_node_close_disposes(self):
        o = Source(1)
        r = Reaction(o, lambda v: None)
        assert not r.disposed
        o.close()
        assert r.disposed

    def test_new_reaction_after_dispose_fires(self):
        """A node re-attached by a fresh reaction delivers its first state again."""
        a = Source(1)
        b = Derived(lambda deps: deps.read(a) + 1)
        first, second = [], []
        r1 = reaction(b, first.append)
        a.set(2)
        assert first == [3]
        r1.dispose()
        assert not b.is_attached

        reaction(b, second.append)
        assert b.value == 3
        assert second == [3]
