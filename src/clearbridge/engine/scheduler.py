# src/clearbridge/engine/scheduler.py
"""Periodic sweep scheduler.

Four independent sweeps, each on its own fixed interval, run sequentially in
one loop. Every sweep is due once at start-up, then every ``interval``
seconds after its previous start. A sweep that raises is logged and the loop
continues.
"""

from __future__ import annotations

import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from clearbridge.core.config import SchedulerSettings
    from clearbridge.engine.manager import InvocationManager

logger = structlog.get_logger(__name__)


@dataclass
class Sweep:
    """One periodic job and its next due time (monotonic seconds)."""

    name: str
    interval_seconds: float
    job: Callable[[], bool]
    next_due: float = 0.0
    runs: int = 0


@contextmanager
def shutdown_handler_context() -> Iterator[threading.Event]:
    """Install SIGINT/SIGTERM handlers that set a stop event.

    Off the main thread no handlers are installed; the event still works
    when set directly. Original handlers are restored on exit.
    """
    stop_event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield stop_event
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, frame: Any) -> None:
        logger.info("Shutdown signal received", signal=signal.Signals(signum).name)
        stop_event.set()
        # Second Ctrl-C force-kills
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield stop_event
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


class SweepScheduler:
    """Runs the pending, retry, status-poll and acknowledge sweeps."""

    def __init__(
        self,
        sweeps: list[Sweep],
        *,
        tick_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not sweeps:
            raise ValueError("SweepScheduler needs at least one sweep")
        self._sweeps = sweeps
        self._tick = tick_seconds
        self._clock = clock
        self._stop_event = threading.Event()

    @classmethod
    def for_manager(cls, manager: InvocationManager, settings: SchedulerSettings, **kwargs: Any) -> SweepScheduler:
        sweeps = [
            Sweep("pending", settings.pending_interval_seconds, manager.process_pending_invocations),
            Sweep("retryable", settings.retry_interval_seconds, manager.process_retryable_invocations),
            Sweep("open_clearances", settings.open_clearances_interval_seconds, manager.process_open_clearances),
            Sweep("acknowledge", settings.acknowledge_interval_seconds, manager.process_acknowledge),
        ]
        return cls(sweeps, tick_seconds=settings.tick_seconds, **kwargs)

    @property
    def sweeps(self) -> list[Sweep]:
        return list(self._sweeps)

    def stop(self) -> None:
        self._stop_event.set()

    def run_due(self) -> list[str]:
        """Run every sweep whose due time has passed. Returns the names run."""
        ran: list[str] = []
        for sweep in self._sweeps:
            if self._stop_event.is_set():
                break
            started = self._clock()
            if started < sweep.next_due:
                continue
            sweep.next_due = started + sweep.interval_seconds
            sweep.runs += 1
            ran.append(sweep.name)
            try:
                ok = sweep.job()
            except Exception as e:
                logger.error("Sweep raised", sweep=sweep.name, error=str(e), exc_info=True)
                continue
            elapsed = self._clock() - started
            if ok:
                logger.debug("Sweep finished", sweep=sweep.name, elapsed_s=round(elapsed, 3))
            else:
                logger.warning("Sweep reported failure", sweep=sweep.name, elapsed_s=round(elapsed, 3))
        return ran

    def run(self, *, install_signal_handlers: bool = True) -> None:
        """Loop until stop() is called or SIGINT/SIGTERM arrives."""
        if not install_signal_handlers:
            self._loop(self._stop_event)
            return
        with shutdown_handler_context() as signalled:
            self._loop(signalled)

    def _loop(self, signalled: threading.Event) -> None:
        logger.info("Scheduler started", sweeps=[s.name for s in self._sweeps], tick_seconds=self._tick)
        while not (signalled.is_set() or self._stop_event.is_set()):
            self.run_due()
            # Wake on either event; signalled is set from the signal handler
            if signalled is self._stop_event:
                self._stop_event.wait(self._tick)
            elif signalled.wait(self._tick):
                break
        logger.info("Scheduler stopped", runs={s.name: s.runs for s in self._sweeps})
