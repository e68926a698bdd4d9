from __future__ import annotations

import pytest

from wavefleet_core.config import Config, get_config, parse_duration


@pytest.mark.core
def test_config_defaults(monkeypatch):
    monkeypatch.delenv("ROLLOUT_WAVE_INTERVAL", raising=False)
    monkeypatch.setenv("LOCAL_CONTROL_ROOT", "/srv/wavefleet")
    get_config.cache_clear()

    config = get_config()

    assert config.env == "test"
    assert config.control_plane_store == "json"
    assert config.control_root_uri() == "/srv/wavefleet"
    assert config.sqlite_path == "/srv/wavefleet/control.db"
    assert config.api_key is None
    options = config.rollout_options()
    assert options.wave_interval == 8.0
    assert options.heartbeat_grace == 120.0
    assert options.require_ok is False
    assert options.skip_offline is True
    assert options.abort_on_cancel is True
    assert get_config() is config


@pytest.mark.core
def test_config_overrides(monkeypatch):
    monkeypatch.setenv("CONTROL_PLANE_STORE", "SQLite")
    monkeypatch.setenv("CONTROL_SQLITE_PATH", "/tmp/wf.db")
    monkeypatch.setenv("ROLLOUT_WAVE_INTERVAL", "500ms")
    monkeypatch.setenv("ROLLOUT_HEARTBEAT_GRACE", "5m")
    monkeypatch.setenv("ROLLOUT_REQUIRE_OK", "true")
    monkeypatch.setenv("ROLLOUT_SKIP_OFFLINE", "0")
    monkeypatch.setenv("ROLLOUT_ABORT_ON_CANCEL", "no")
    monkeypatch.setenv("CONTROL_API_KEY", "secret")

    config = Config.from_env()

    assert config.control_plane_store == "sqlite"
    assert config.sqlite_path == "/tmp/wf.db"
    assert config.api_key == "secret"
    options = config.rollout_options()
    assert options.wave_interval == pytest.approx(0.5)
    assert options.heartbeat_grace == 300.0
    assert options.require_ok is True
    assert options.skip_offline is False
    assert options.abort_on_cancel is False


@pytest.mark.core
def test_config_rejects_bad_values(monkeypatch):
    monkeypatch.setenv("CONTROL_PLANE_STORE", "postgres")
    with pytest.raises(ValueError):
        Config.from_env()

    monkeypatch.setenv("CONTROL_PLANE_STORE", "json")
    monkeypatch.setenv("ROLLOUT_WAVE_INTERVAL", "soon")
    with pytest.raises(ValueError):
        Config.from_env()


@pytest.mark.core
def test_sqlite_needs_local_path_for_remote_root(monkeypatch):
    monkeypatch.setenv("CONTROL_PLANE_STORE", "sqlite")
    monkeypatch.setenv("LOCAL_CONTROL_ROOT", "s3://bucket/wavefleet")
    with pytest.raises(ValueError):
        Config.from_env()


@pytest.mark.core
@pytest.mark.parametrize(
    ("raw", "seconds"),
    [("8s", 8.0), ("2m", 120.0), ("1h", 3600.0), ("250ms", 0.25), ("3", 3.0)],
)
def test_parse_duration(raw, seconds):
    assert parse_duration(raw) == pytest.approx(seconds)
