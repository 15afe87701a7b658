"""Tests for enterprise configuration loader."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from site_fleet.enterprise.config.settings import AppSettings, TimingSettings, get_settings


def _write_config(config_dir: Path, base: str, environments: dict) -> None:
    env_dir = config_dir / "environments"
    env_dir.mkdir(parents=True)
    (config_dir / "settings.yaml").write_text(base, encoding="utf-8")
    for name, content in environments.items():
        (env_dir / f"{name}.yaml").write_text(content, encoding="utf-8")


def test_settings_load_default_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Default environment should combine base settings and dev overrides."""

    config_dir = tmp_path / "config"
    _write_config(
        config_dir,
        """
        environment: dev
        grid:
          cell_size: 0.25
        fleet:
          charge_threshold: 15
        mqtt:
          broker_host: base-broker
          port: 1883
        """,
        {
            "dev": """
            mqtt:
              broker_host: dev-broker
            logging:
              level: DEBUG
            """
        },
    )

    monkeypatch.setenv("SF_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("SF_ENVIRONMENT", raising=False)

    get_settings.cache_clear()
    settings = get_settings()

    assert settings.environment == "dev"
    assert settings.grid.cell_size == 0.25
    assert settings.fleet.charge_threshold == 15
    assert settings.fleet.assignment_battery_floor == 30
    assert settings.mqtt.broker_host == "dev-broker"
    assert settings.mqtt.port == 1883
    assert settings.logging.level == "DEBUG"


def test_settings_env_override(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Environment variables should override YAML configuration."""

    config_dir = tmp_path / "config"
    _write_config(
        config_dir,
        """
        environment: prod
        mqtt:
          broker_host: base
          port: 1883
        tasks:
          charge_interrupt_policy: requeue
        """,
        {"prod": "{}"},
    )

    monkeypatch.setenv("SF_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("SF_ENVIRONMENT", "prod")
    monkeypatch.setenv("SF_MQTT__PORT", "2883")
    monkeypatch.setenv("SF_TASKS__CHARGE_INTERRUPT_POLICY", "fail")

    get_settings.cache_clear()
    settings = get_settings()

    assert settings.environment == "prod"
    assert settings.mqtt.port == 2883
    assert settings.mqtt.broker_host == "base"
    assert settings.tasks.charge_interrupt_policy == "fail"


def test_settings_cache_clear(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Clearing the cache should re-read configuration files."""

    config_dir = tmp_path / "config"
    _write_config(config_dir, "{}", {"dev": "{}"})

    monkeypatch.setenv("SF_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("SF_ENVIRONMENT", raising=False)

    get_settings.cache_clear()
    first = get_settings()

    monkeypatch.setenv("SF_ENVIRONMENT", "qa")
    (config_dir / "environments" / "qa.yaml").write_text(
        "logging:\n  level: WARNING\n",
        encoding="utf-8",
    )

    get_settings.cache_clear()
    second = get_settings()

    assert first.environment == "dev"
    assert second.environment == "qa"
    assert second.logging.level == "WARNING"


def test_missing_config_directory_falls_back_to_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("SF_CONFIG_DIR", str(tmp_path / "absent"))
    monkeypatch.delenv("SF_ENVIRONMENT", raising=False)

    settings = AppSettings()

    assert settings.timing.tick_rate_hz == 10
    assert settings.timing.tick_seconds == pytest.approx(0.1)
    assert settings.tasks.requeue_resume == "resume"
    assert settings.engine.command_queue_size == 1024


def test_timing_rejects_default_outside_bounds() -> None:
    with pytest.raises(ValidationError):
        TimingSettings(min_time_multiplier=0.5, max_time_multiplier=2.0, default_time_multiplier=3.0)
