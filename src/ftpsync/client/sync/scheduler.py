"""Worker and timer management for the sync queue.

This module provides:
- SchedulerState: Idle, draining or armed
- SyncScheduler: Runs at most one worker thread and a one-shot re-arm timer

The worker repeatedly runs drain cycles while there is work. The decision
to stop and the release of the worker slot happen under the queue's lock,
so an item added concurrently either sees the live worker or starts a new
one, never neither.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """Scheduler state."""

    IDLE = "idle"  # No worker, no timer
    DRAINING = "draining"  # Worker processing the queue
    ARMED = "armed"  # Waiting for the timer to trigger a root scan


class SyncScheduler:
    """Single worker thread plus a one-shot timer.

    Example:
        scheduler = SyncScheduler(
            run_cycle=queue.drain_cycle,
            has_work=queue.has_work,
            on_timer=queue.add_root_scan,
            interval=60,
        )
        scheduler.start()
    """

    def __init__(
        self,
        run_cycle: Callable[[], None],
        has_work: Callable[[], bool],
        on_timer: Callable[[], None],
        interval: float,
        lock: threading.RLock | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            run_cycle: Drains the queue once and runs the finish routine.
            has_work: Whether another drain cycle is needed. Called with
                the lock held.
            on_timer: Called when the re-arm timer fires.
            interval: Seconds between the end of a cycle and the timer.
            lock: Lock shared with the queue's pending collection.
        """
        self._run_cycle = run_cycle
        self._has_work = has_work
        self._on_timer = on_timer
        self._interval = interval

        self._lock = lock or threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._worker: threading.Thread | None = None
        self._timer: threading.Timer | None = None
        self._state = SchedulerState.IDLE
        self._stopping = False

    @property
    def state(self) -> SchedulerState:
        """Current scheduler state."""
        return self._state

    @property
    def interval(self) -> float:
        """Seconds the timer waits once armed."""
        return self._interval

    @property
    def is_draining(self) -> bool:
        """Check if a worker thread is alive."""
        with self._lock:
            return self._worker is not None and self._worker.is_alive()

    @property
    def in_worker(self) -> bool:
        """Check if the caller runs on the worker thread."""
        return self._worker is threading.current_thread()

    def start(self) -> bool:
        """Start the worker unless one is already alive.

        Returns:
            True if a new worker thread was started.
        """
        with self._lock:
            if self._stopping:
                return False
            if self._worker is not None and self._worker.is_alive():
                return False

            self._cancel_timer()
            self._state = SchedulerState.DRAINING
            self._worker = threading.Thread(
                target=self._work,
                name="ftpsync-queue",
                daemon=True,
            )
            self._worker.start()
            return True

    def _work(self) -> None:
        """Worker thread body."""
        while True:
            try:
                self._run_cycle()
            except Exception:
                logger.exception("Drain cycle failed")

            with self._lock:
                if self._stopping or not self._has_work():
                    self._worker = None
                    if self._state == SchedulerState.DRAINING:
                        self._state = SchedulerState.IDLE
                    self._idle.notify_all()
                    return

                # Items arrived while finishing: run another cycle
                self._cancel_timer()
                self._state = SchedulerState.DRAINING

    def arm(self) -> None:
        """Arm the one-shot timer (replacing any armed one)."""
        with self._lock:
            if self._stopping:
                return
            self._cancel_timer()
            self._timer = threading.Timer(self._interval, self._fire)
            self._timer.daemon = True
            self._timer.start()
            self._state = SchedulerState.ARMED
        logger.debug("Next remote check in %.0fs", self._interval)

    def cancel(self) -> None:
        """Cancel the armed timer, if any."""
        with self._lock:
            self._cancel_timer()
            if self._state == SchedulerState.ARMED:
                self._state = SchedulerState.IDLE

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        """Timer callback."""
        with self._lock:
            self._timer = None
            if self._stopping:
                return
            if self._state == SchedulerState.ARMED:
                self._state = SchedulerState.IDLE
        try:
            self._on_timer()
        except Exception:
            logger.exception("Scheduled sync failed to start")

    def wait(self, timeout: float | None = None) -> bool:
        """Wait until no worker is alive.

        Returns:
            True if the worker finished within the timeout.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._worker is None, timeout)

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel the timer and wait for the worker to finish its cycle."""
        with self._lock:
            self._stopping = True
            self._cancel_timer()
            worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=timeout)
        with self._lock:
            self._state = SchedulerState.IDLE
