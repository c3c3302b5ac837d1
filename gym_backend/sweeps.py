"""Scheduler integration for the subscription expiration sweep."""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from threading import Event, Lock, Thread
from typing import Dict, Optional

from gym_backend.app.memberships import SweepSummary
from gym_backend.app.services.memberships import expire_subscriptions
from gym_backend.config import MembershipConfig, load_membership_config

logger = logging.getLogger(__name__)

_scheduler_lock = Lock()
_worker: Optional["_SweepWorker"] = None

# Held for the whole duration of a sweep; a second caller skips instead of waiting.
_run_lock = Lock()

_SWEEP_METRICS: Dict[str, object] = {
    "runs": 0,
    "expired": 0,
    "failures": 0,
    "skipped_runs": 0,
    "in_progress": False,
    "last_run_at": None,
    "last_success_at": None,
    "last_error": None,
}
_metrics_lock = Lock()


def _record_run_start(started_at: datetime) -> None:
    with _metrics_lock:
        _SWEEP_METRICS["runs"] = int(_SWEEP_METRICS.get("runs", 0)) + 1
        _SWEEP_METRICS["in_progress"] = True
        _SWEEP_METRICS["last_run_at"] = started_at


def _record_run_success(completed_at: datetime, summary: SweepSummary) -> None:
    with _metrics_lock:
        _SWEEP_METRICS["expired"] = int(_SWEEP_METRICS.get("expired", 0)) + summary.expired
        _SWEEP_METRICS["failures"] = int(_SWEEP_METRICS.get("failures", 0)) + summary.failures
        _SWEEP_METRICS["in_progress"] = False
        _SWEEP_METRICS["last_success_at"] = completed_at
        _SWEEP_METRICS["last_error"] = None


def _record_run_failure(error: Exception) -> None:
    with _metrics_lock:
        _SWEEP_METRICS["failures"] = int(_SWEEP_METRICS.get("failures", 0)) + 1
        _SWEEP_METRICS["in_progress"] = False
        _SWEEP_METRICS["last_error"] = f"{type(error).__name__}: {error}"


def _record_skip() -> None:
    with _metrics_lock:
        _SWEEP_METRICS["skipped_runs"] = int(_SWEEP_METRICS.get("skipped_runs", 0)) + 1


def run_sweep_job(*, now: Optional[datetime] = None) -> Optional[SweepSummary]:
    """Run one expiration sweep unless another one is still in progress.

    Returns ``None`` when the run was skipped.
    """

    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)

    if not _run_lock.acquire(blocking=False):
        _record_skip()
        logger.warning(
            "Expiration sweep skipped: previous run still in progress",
            extra={"scheduled_at": current_time.isoformat()},
        )
        return None

    try:
        _record_run_start(current_time)
        sweep_date: date = current_time.astimezone(timezone.utc).date()
        try:
            summary = expire_subscriptions(sweep_date)
        except Exception as exc:
            _record_run_failure(exc)
            logger.exception(
                "Expiration sweep failed",
                extra={"sweep_date": sweep_date.isoformat()},
            )
            raise
        _record_run_success(current_time, summary)
        logger.info(
            "Expiration sweep completed",
            extra={
                "sweep_date": sweep_date.isoformat(),
                "expired": summary.expired,
                "failures": summary.failures,
            },
        )
        return summary
    finally:
        _run_lock.release()


class _SweepWorker(Thread):
    def __init__(self, *, initial_delay: float, interval: float):
        super().__init__(daemon=True, name="expiration-sweep")
        self._initial_delay = max(0.0, initial_delay)
        self._interval = max(1.0, interval)
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                run_sweep_job()
            except Exception:
                # Failure is logged and recorded inside run_sweep_job; the next tick retries.
                logger.debug("Expiration sweep tick ended with an error")
            if self._stop_event.wait(self._interval):
                break


def _seconds_until(hour: int, minute: int = 0, *, now: Optional[datetime] = None) -> float:
    current = now or datetime.now(timezone.utc)
    target = current.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= current:
        target += timedelta(days=1)
    return max((target - current).total_seconds(), 0.0)


def start_sweep_scheduler(config: Optional[MembershipConfig] = None) -> None:
    global _worker

    settings = config or load_membership_config()
    if not settings.sweep_enabled:
        logger.info("Expiration sweep scheduler disabled")
        return

    with _scheduler_lock:
        if _worker is not None:
            return
        delay = _seconds_until(settings.sweep_hour_utc, settings.sweep_minute_utc)
        _worker = _SweepWorker(initial_delay=delay, interval=settings.sweep_interval_seconds)
        _worker.start()
        logger.info(
            "Expiration sweep scheduler started",
            extra={
                "initial_delay_seconds": round(delay, 2),
                "interval_seconds": settings.sweep_interval_seconds,
            },
        )


def shutdown_sweep_scheduler() -> None:
    global _worker

    with _scheduler_lock:
        if _worker is None:
            return
        _worker.stop()
        _worker.join(timeout=1.0)
        _worker = None
        logger.info("Expiration sweep scheduler stopped")


def get_sweep_metrics() -> Dict[str, object]:
    with _metrics_lock:
        return {
            **_SWEEP_METRICS,
            "last_run_at": _SWEEP_METRICS["last_run_at"].isoformat() if _SWEEP_METRICS.get("last_run_at") else None,
            "last_success_at": (
                _SWEEP_METRICS["last_success_at"].isoformat() if _SWEEP_METRICS.get("last_success_at") else None
            ),
        }


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        _SWEEP_METRICS.update(
            {
                "runs": 0,
                "expired": 0,
                "failures": 0,
                "skipped_runs": 0,
                "in_progress": False,
                "last_run_at": None,
                "last_success_at": None,
                "last_error": None,
            }
        )


__all__ = [
    "get_sweep_metrics",
    "run_sweep_job",
    "shutdown_sweep_scheduler",
    "start_sweep_scheduler",
]
