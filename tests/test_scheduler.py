"""Tests for rulecascade.infrastructure.scheduler."""

from __future__ import annotations

import threading

import pytest

from rulecascade.infrastructure.scheduler import PropagationScheduler
from rulecascade.rules.errors import StoreError
from rulecascade.rules.promotion import PropagationStats


class _FakeEngine:
    """Stands in for RuleEngine; only the propagation hook is needed."""

    def __init__(self, *, fail: bool = False, wanted_calls: int = 1) -> None:
        self.fail = fail
        self.calls = 0
        self._wanted = wanted_calls
        self.reached = threading.Event()

    def run_propagation_cycle(self) -> PropagationStats:
        self.calls += 1
        if self.calls >= self._wanted:
            self.reached.set()
        if self.fail:
            msg = "database is locked"
            raise StoreError(msg)
        return PropagationStats(rules_analyzed=2, rules_promoted=1)


class TestRunOnce:
    def test_success(self) -> None:
        engine = _FakeEngine()
        scheduler = PropagationScheduler(engine)  # type: ignore[arg-type]
        stats = scheduler.run_once()
        assert stats is not None
        assert stats.rules_promoted == 1
        assert scheduler.cycles_run == 1
        assert scheduler.last_stats is stats

    def test_failure_is_counted(self) -> None:
        scheduler = PropagationScheduler(_FakeEngine(fail=True))  # type: ignore[arg-type]
        assert scheduler.run_once() is None
        assert scheduler.cycles_failed == 1
        assert scheduler.cycles_run == 0
        assert scheduler.last_stats is None

    @pytest.mark.parametrize("interval", [0, -1.0])
    def test_invalid_interval(self, interval: float) -> None:
        with pytest.raises(ValueError, match="positive"):
            PropagationScheduler(_FakeEngine(), interval)  # type: ignore[arg-type]


class TestLoop:
    def test_runs_repeatedly_until_stopped(self) -> None:
        engine = _FakeEngine(wanted_calls=3)
        scheduler = PropagationScheduler(engine, 0.01)  # type: ignore[arg-type]
        scheduler.start()
        try:
            assert scheduler.running
            assert engine.reached.wait(5.0)
        finally:
            scheduler.stop()
        assert not scheduler.running
        assert scheduler.cycles_run >= 3

    def test_failures_do_not_stop_the_loop(self) -> None:
        engine = _FakeEngine(fail=True, wanted_calls=2)
        scheduler = PropagationScheduler(engine, 0.01)  # type: ignore[arg-type]
        scheduler.start()
        try:
            assert engine.reached.wait(5.0)
        finally:
            scheduler.stop()
        assert scheduler.cycles_failed >= 2

    def test_delayed_first_run(self) -> None:
        engine = _FakeEngine()
        scheduler = PropagationScheduler(
            engine,  # type: ignore[arg-type]
            60.0,
            run_immediately=False,
        )
        scheduler.start()
        scheduler.stop()
        assert engine.calls == 0

    def test_start_twice_is_noop(self) -> None:
        engine = _FakeEngine()
        scheduler = PropagationScheduler(engine, 60.0)  # type: ignore[arg-type]
        scheduler.start()
        first = scheduler._thread
        scheduler.start()
        assert scheduler._thread is first
        scheduler.stop()
