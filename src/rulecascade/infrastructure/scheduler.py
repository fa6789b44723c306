"""Periodic propagation: run promotion cycles on a background thread."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rulecascade.rules.engine import RuleEngine
    from rulecascade.rules.promotion import PropagationStats

logger = logging.getLogger(__name__)

# Default interval between cycles (seconds): daily.
DEFAULT_INTERVAL_SECONDS: float = 24 * 60 * 60


class PropagationScheduler:
    """Run :meth:`RuleEngine.run_propagation_cycle` every *interval_seconds*.

    The loop lives on a daemon thread and exits when :meth:`stop` sets the
    stop event.  A failed cycle is logged and the loop carries on.
    """

    def __init__(
        self,
        engine: RuleEngine,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        *,
        run_immediately: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            msg = f"interval_seconds must be positive, got {interval_seconds}"
            raise ValueError(msg)
        self._engine = engine
        self._interval = interval_seconds
        self._run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.cycles_run = 0
        self.cycles_failed = 0
        self.last_stats: PropagationStats | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> PropagationStats | None:
        """Run a single cycle. Returns its stats, or None if it failed."""
        try:
            stats = self._engine.run_propagation_cycle()
        except Exception:  # keep the loop alive across a bad cycle
            self.cycles_failed += 1
            logger.exception("Scheduled propagation cycle failed")
            return None
        self.cycles_run += 1
        self.last_stats = stats
        return stats

    def _loop(self) -> None:
        if self._run_immediately:
            self.run_once()
        while not self._stop_event.wait(self._interval):
            self.run_once()
        logger.debug("Propagation scheduler stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="rulecascade-propagation", daemon=True
        )
        self._thread.start()
        logger.info("Propagation scheduler started (every %.0f s)", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the loop to exit and wait up to *timeout* seconds for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def wait(self) -> None:
        """Block until :meth:`stop` is called (used by the CLI)."""
        self._stop_event.wait()
