"""Membership engine configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os


@dataclass(frozen=True)
class MembershipConfig:
    """Configuration for the expiration sweep and storage timeouts."""

    sweep_enabled: bool
    sweep_hour_utc: int
    sweep_minute_utc: int
    sweep_interval_seconds: int
    expiring_threshold_days: int
    statement_timeout_ms: int


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def load_membership_config(env: Optional[Mapping[str, str]] = None) -> MembershipConfig:
    """Load :class:`MembershipConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    sweep_hour = _to_int(env_mapping.get("SWEEP_HOUR_UTC"), default=0)
    sweep_minute = _to_int(env_mapping.get("SWEEP_MINUTE_UTC"), default=0)
    if not 0 <= sweep_hour <= 23:
        raise ValueError("SWEEP_HOUR_UTC must be between 0 and 23")
    if not 0 <= sweep_minute <= 59:
        raise ValueError("SWEEP_MINUTE_UTC must be between 0 and 59")

    return MembershipConfig(
        sweep_enabled=_to_bool(env_mapping.get("SWEEP_ENABLED"), default=True),
        sweep_hour_utc=sweep_hour,
        sweep_minute_utc=sweep_minute,
        sweep_interval_seconds=max(60, _to_int(env_mapping.get("SWEEP_INTERVAL_SECONDS"), default=24 * 60 * 60)),
        expiring_threshold_days=max(0, _to_int(env_mapping.get("EXPIRING_THRESHOLD_DAYS"), default=30)),
        statement_timeout_ms=max(0, _to_int(env_mapping.get("DB_STATEMENT_TIMEOUT_MS"), default=5000)),
    )
