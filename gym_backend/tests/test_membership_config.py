import pytest

from gym_backend.config import load_membership_config


def test_defaults_when_environment_is_empty():
    config = load_membership_config({})

    assert config.sweep_enabled is True
    assert (config.sweep_hour_utc, config.sweep_minute_utc) == (0, 0)
    assert config.sweep_interval_seconds == 24 * 60 * 60
    assert config.expiring_threshold_days == 30
    assert config.statement_timeout_ms == 5000


def test_values_are_parsed_from_environment():
    config = load_membership_config(
        {
            "SWEEP_ENABLED": "off",
            "SWEEP_HOUR_UTC": "2",
            "SWEEP_MINUTE_UTC": "15",
            "SWEEP_INTERVAL_SECONDS": "3600",
            "EXPIRING_THRESHOLD_DAYS": "7",
            "DB_STATEMENT_TIMEOUT_MS": "250",
        }
    )

    assert config.sweep_enabled is False
    assert (config.sweep_hour_utc, config.sweep_minute_utc) == (2, 15)
    assert config.sweep_interval_seconds == 3600
    assert config.expiring_threshold_days == 7
    assert config.statement_timeout_ms == 250


def test_interval_has_a_floor():
    assert load_membership_config({"SWEEP_INTERVAL_SECONDS": "5"}).sweep_interval_seconds == 60


@pytest.mark.parametrize(
    "env",
    [
        {"SWEEP_HOUR_UTC": "24"},
        {"SWEEP_MINUTE_UTC": "60"},
        {"SWEEP_INTERVAL_SECONDS": "hourly"},
    ],
)
def test_invalid_values_are_rejected(env):
    with pytest.raises(ValueError):
        load_membership_config(env)
