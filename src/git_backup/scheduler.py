"""Immediate-start plus fixed-interval triggering of backup cycles."""

import datetime
import logging
import threading
from collections.abc import Callable

from .constants import APP_NAME
from .orchestrator import BackupInProgressError, Orchestrator

logger = logging.getLogger(APP_NAME)


def next_run_after(now: datetime.datetime, interval_hours: int) -> datetime.datetime:
    """The next firing of `0 */N * * *` strictly after `now`.

    Fires at minute 0 of every hour divisible by `interval_hours`, counting
    from midnight (so 5 fires at 00, 05, 10, 15 and 20 o'clock).

    Args:
        now (datetime.datetime): The reference instant (local time).
        interval_hours (int): N, at least 1.

    Returns:
        datetime.datetime: The next fire time.

    Raises:
        ValueError: If `interval_hours` is less than 1.
    """
    if interval_hours < 1:
        raise ValueError(f"interval_hours must be >= 1, got {interval_hours}")

    candidate = now.replace(minute=0, second=0, microsecond=0)
    while True:
        candidate += datetime.timedelta(hours=1)
        if candidate.hour % interval_hours == 0:
            return candidate


class Scheduler:
    """Triggers the orchestrator at start-up and then on a fixed schedule.

    Every firing runs its cycle on a worker thread, so the schedule keeps
    ticking while a long cycle runs; a firing that overlaps a running cycle
    is rejected by the orchestrator's guard and logged as skipped.

    Attributes:
        orchestrator (Orchestrator): The cycle runner.
        interval_hours (int): Hours between scheduled cycles.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        interval_hours: int,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ):
        self.orchestrator = orchestrator
        self.interval_hours = interval_hours
        self.clock = clock
        self._workers: list[threading.Thread] = []

    @property
    def cron_expression(self) -> str:
        return f"0 */{self.interval_hours} * * *"

    def run_once(self, reason: str) -> None:
        """Runs a single cycle in the calling thread, logging instead of raising."""
        try:
            results = self.orchestrator.run_cycle()
        except BackupInProgressError:
            logger.warning(f"SKIPPED {reason} backup: a cycle is already running.")
            return
        except Exception as e:
            logger.error(f"ERROR: {reason.capitalize()} backup failed: {e}")
            return

        failed = [r.mapping_name for r in results if not r.ok]
        if failed:
            logger.warning(f"WARNING: {reason.capitalize()} backup failed for {failed}")

    def trigger(self, reason: str) -> threading.Thread:
        """Starts a cycle on a worker thread and returns the thread."""
        worker = threading.Thread(
            target=self.run_once, args=(reason,), name=f"backup-{reason}", daemon=True
        )
        self._workers = [w for w in self._workers if w.is_alive()]
        self._workers.append(worker)
        worker.start()
        return worker

    def run(self, stop_event: threading.Event) -> None:
        """Fires immediately, then at every scheduled time until `stop_event` is set.

        Args:
            stop_event (threading.Event): Set it to end the loop.
        """
        logger.info(f"SCHEDULER: Backups scheduled with cron '{self.cron_expression}'.")
        self.trigger("initial")

        while not stop_event.is_set():
            fire_at = next_run_after(self.clock(), self.interval_hours)
            logger.info(f"SCHEDULER: Next backup at {fire_at:%Y-%m-%d %H:%M}.")

            # Re-check in bounded steps so clock jumps (suspend, DST) are absorbed.
            while not stop_event.is_set():
                remaining = (fire_at - self.clock()).total_seconds()
                if remaining <= 0:
                    break
                stop_event.wait(min(remaining, 60))

            if stop_event.is_set():
                break
            self.trigger("scheduled")

    def join(self, timeout: float | None = None) -> None:
        """Waits for running worker threads to finish."""
        for worker in self._workers:
            worker.join(timeout)
