import datetime
import threading
from unittest.mock import MagicMock

import pytest
from hypothesis import given
from hypothesis import strategies as st

from git_backup.orchestrator import BackupInProgressError
from git_backup.scheduler import Scheduler, next_run_after

HOUR = datetime.timedelta(hours=1)


@given(
    now=st.datetimes(
        min_value=datetime.datetime(2000, 1, 1),
        max_value=datetime.datetime(2100, 1, 1),
    ),
    interval=st.integers(min_value=1, max_value=24),
)
def test_next_run_matches_cron(now: datetime.datetime, interval: int) -> None:
    """
    Property: The next fire time is strictly in the future, on the hour, on an
    hour divisible by N, at most N hours away, and no earlier whole hour qualifies.
    """
    fire = next_run_after(now, interval)

    assert fire > now
    assert (fire.minute, fire.second, fire.microsecond) == (0, 0, 0)
    assert fire.hour % interval == 0
    assert fire - now <= datetime.timedelta(hours=interval)

    earlier = fire - HOUR
    while earlier > now:
        assert earlier.hour % interval != 0
        earlier -= HOUR


def test_next_run_examples() -> None:
    now = datetime.datetime(2024, 5, 1, 5, 59, 59)
    assert next_run_after(now, 6) == datetime.datetime(2024, 5, 1, 6, 0)
    assert next_run_after(datetime.datetime(2024, 5, 1, 6, 0), 6) == (
        datetime.datetime(2024, 5, 1, 12, 0)
    )
    assert next_run_after(datetime.datetime(2024, 5, 1, 22, 10), 5) == (
        datetime.datetime(2024, 5, 2, 0, 0)
    )

    with pytest.raises(ValueError):
        next_run_after(now, 0)


def test_fires_immediately_on_start(mocker: MagicMock) -> None:
    scheduler = Scheduler(MagicMock(), 6)
    stop = threading.Event()
    reasons: list[str] = []

    def fake_trigger(reason: str) -> None:
        reasons.append(reason)
        stop.set()

    mocker.patch.object(scheduler, "trigger", side_effect=fake_trigger)

    scheduler.run(stop)

    assert reasons == ["initial"]


def test_fires_again_at_next_slot(mocker: MagicMock) -> None:
    times = iter(
        [
            datetime.datetime(2024, 5, 1, 0, 30),
            datetime.datetime(2024, 5, 1, 6, 0),
        ]
    )
    scheduler = Scheduler(MagicMock(), 6, clock=lambda: next(times))
    stop = threading.Event()
    reasons: list[str] = []

    def fake_trigger(reason: str) -> None:
        reasons.append(reason)
        if reason == "scheduled":
            stop.set()

    mocker.patch.object(scheduler, "trigger", side_effect=fake_trigger)

    scheduler.run(stop)

    assert reasons == ["initial", "scheduled"]
    assert scheduler.cron_expression == "0 */6 * * *"


def test_overlapping_fire_is_logged_as_skipped(
    caplog: pytest.LogCaptureFixture,
) -> None:
    orchestrator = MagicMock()
    orchestrator.run_cycle.side_effect = BackupInProgressError("busy")
    scheduler = Scheduler(orchestrator, 6)

    scheduler.trigger("scheduled").join(5)

    orchestrator.run_cycle.assert_called_once_with()
    assert "SKIPPED scheduled backup" in caplog.text


def test_cycle_failure_is_logged_not_raised(
    caplog: pytest.LogCaptureFixture,
) -> None:
    orchestrator = MagicMock()
    orchestrator.run_cycle.side_effect = RuntimeError("Git error: clone failed")
    scheduler = Scheduler(orchestrator, 6)

    scheduler.run_once("initial")

    assert "Initial backup failed: Git error: clone failed" in caplog.text
