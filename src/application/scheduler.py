# src/application/scheduler.py

import logging
import os
import signal
import sys
import threading
from typing import Any, Callable, Optional

from src.domain.exceptions import ReconciliationInProgressError

logger = logging.getLogger(__name__)

RECONCILIATION_INTERVAL_SECONDS = float(os.getenv("RECONCILIATION_INTERVAL_SECONDS", "3600"))


class ReconciliationScheduler:
    """
    Runs ``run_cycle`` once on start and then every ``interval_seconds``.

    Cycles never overlap: a tick that finds the previous cycle still running
    is skipped. Errors raised by a cycle are logged and the timer keeps going.
    """

    def __init__(
        self,
        run_cycle: Callable[[], Any],
        interval_seconds: float = RECONCILIATION_INTERVAL_SECONDS,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.run_cycle = run_cycle
        self.interval_seconds = interval_seconds
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._timer_thread is not None

    @property
    def cycle_in_progress(self) -> bool:
        return self._run_lock.locked()

    def start(self) -> None:
        with self._state_lock:
            if self._timer_thread is not None:
                logger.warning("Reconciliation scheduler is already running")
                return

            logger.info(
                "Starting reconciliation scheduler (interval: %.0f seconds)",
                self.interval_seconds,
            )
            self._stop_event = threading.Event()

            # Startup run is detached; the timer is armed whether or not it succeeds.
            self._spawn_cycle("initial")

            self._timer_thread = threading.Thread(
                target=self._tick_loop,
                args=(self._stop_event,),
                name="reconciliation-timer",
                daemon=True,
            )
            self._timer_thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._state_lock:
            timer_thread = self._timer_thread
            if timer_thread is None:
                return
            self._stop_event.set()
            self._timer_thread = None

        if timer_thread is not threading.current_thread():
            timer_thread.join(timeout)
        logger.info("Reconciliation scheduler stopped")

    def run_now(self) -> Any:
        """
        Runs one cycle in the calling thread.
        Raises ReconciliationInProgressError if a cycle is already in flight.
        """
        if not self._run_lock.acquire(blocking=False):
            raise ReconciliationInProgressError("A reconciliation cycle is already running")
        try:
            return self.run_cycle()
        finally:
            self._run_lock.release()

    def _tick_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_seconds):
            self._spawn_cycle("scheduled")

    def _spawn_cycle(self, trigger: str) -> threading.Thread:
        thread = threading.Thread(
            target=self._guarded_cycle,
            args=(trigger,),
            name=f"reconciliation-{trigger}",
            daemon=True,
        )
        thread.start()
        return thread

    def _guarded_cycle(self, trigger: str) -> None:
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Skipping %s reconciliation cycle; previous cycle still running", trigger)
            return
        try:
            self.run_cycle()
        except Exception:
            logger.exception("Error in %s reconciliation cycle", trigger)
        finally:
            self._run_lock.release()


def install_signal_handlers(
    scheduler: ReconciliationScheduler,
    exit: Callable[[int], Any] = sys.exit,
) -> None:
    """
    SIGTERM / SIGINT stop the scheduler and exit cleanly.
    Install after ``scheduler.start()`` has returned.
    """

    def _handle(signum, frame) -> None:
        logger.info("%s received, stopping scheduler...", signal.Signals(signum).name)
        scheduler.stop()
        exit(0)

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)
