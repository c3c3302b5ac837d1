from datetime import date, datetime, timedelta, timezone

import pytest

from gym_backend import sweeps
from gym_backend.app.memberships import SweepSummary
from gym_backend.config import load_membership_config


def test_run_sweep_job_updates_metrics(monkeypatch):
    sweeps._reset_metrics_for_testing()

    summary = SweepSummary(expired=3, failures=1, expired_ids=(7, 8, 9))
    seen = []

    def fake_expire(now):
        seen.append(now)
        return summary

    monkeypatch.setattr(sweeps, "expire_subscriptions", fake_expire)

    run_time = datetime(2025, 2, 1, 0, 5, tzinfo=timezone.utc)
    result = sweeps.run_sweep_job(now=run_time)

    assert result == summary
    assert seen == [date(2025, 2, 1)]

    metrics = sweeps.get_sweep_metrics()
    assert metrics["runs"] == 1
    assert metrics["expired"] == 3
    assert metrics["failures"] == 1
    assert metrics["in_progress"] is False
    assert metrics["last_run_at"] == run_time.isoformat()
    assert metrics["last_success_at"] == run_time.isoformat()
    assert metrics["last_error"] is None


def test_run_sweep_job_uses_utc_calendar_day(monkeypatch):
    sweeps._reset_metrics_for_testing()
    seen = []
    monkeypatch.setattr(sweeps, "expire_subscriptions", lambda now: seen.append(now) or SweepSummary())

    late_evening = datetime(2025, 1, 31, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    sweeps.run_sweep_job(now=late_evening)

    assert seen == [date(2025, 2, 1)]


def test_run_sweep_job_records_failure(monkeypatch):
    sweeps._reset_metrics_for_testing()

    def failing_expire(now):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(sweeps, "expire_subscriptions", failing_expire)

    with pytest.raises(RuntimeError):
        sweeps.run_sweep_job(now=datetime(2025, 2, 1, tzinfo=timezone.utc))

    metrics = sweeps.get_sweep_metrics()
    assert metrics["failures"] == 1
    assert metrics["in_progress"] is False
    assert metrics["last_success_at"] is None
    assert metrics["last_error"] == "RuntimeError: database unavailable"
    assert not sweeps._run_lock.locked()


def test_run_sweep_job_skips_while_previous_run_active(monkeypatch):
    sweeps._reset_metrics_for_testing()
    calls = []
    monkeypatch.setattr(sweeps, "expire_subscriptions", lambda now: calls.append(now) or SweepSummary())

    assert sweeps._run_lock.acquire(blocking=False)
    try:
        result = sweeps.run_sweep_job(now=datetime(2025, 2, 1, tzinfo=timezone.utc))
    finally:
        sweeps._run_lock.release()

    assert result is None
    assert calls == []
    metrics = sweeps.get_sweep_metrics()
    assert metrics["skipped_runs"] == 1
    assert metrics["runs"] == 0


def test_seconds_until_rolls_over_to_next_day():
    now = datetime(2025, 2, 1, 3, 0, tzinfo=timezone.utc)

    assert sweeps._seconds_until(4, 30, now=now) == 90 * 60
    assert sweeps._seconds_until(3, 0, now=now) == 24 * 60 * 60
    assert sweeps._seconds_until(1, 0, now=now) == 22 * 60 * 60


def test_disabled_scheduler_does_not_start_worker():
    config = load_membership_config({"SWEEP_ENABLED": "false"})

    sweeps.start_sweep_scheduler(config)

    assert sweeps._worker is None
    sweeps.shutdown_sweep_scheduler()
