from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from wavefleet_core.config import get_config
from wavefleet_core.fleet.store import save_devices
from wavefleet_core.fleet.types import DeviceRecord
from wavefleet_core.stores.json_store import JsonFleetStore, JsonRolloutStore
from wavefleet_core.stores.registry import StoreBundle
from wavefleet_core.stores.sqlite_store import SqliteControlStore

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _control_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("CONTROL_PLANE_STORE", "json")
    monkeypatch.setenv("LOCAL_CONTROL_ROOT", (tmp_path / "control_root").as_posix())
    monkeypatch.setenv("ROLLOUT_WAVE_INTERVAL", "0s")
    for name in (
        "CONTROL_SQLITE_PATH",
        "CONTROL_API_KEY",
        "ROLLOUT_HEARTBEAT_GRACE",
        "ROLLOUT_REQUIRE_OK",
        "ROLLOUT_SKIP_OFFLINE",
        "ROLLOUT_ABORT_ON_CANCEL",
    ):
        monkeypatch.delenv(name, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def base_uri(tmp_path: Path) -> str:
    return (tmp_path / "data").as_posix()


@pytest.fixture
def json_bundle(base_uri: str) -> StoreBundle:
    lock = threading.RLock()
    return StoreBundle(
        fleet=JsonFleetStore(base_uri, lock=lock),
        rollouts=JsonRolloutStore(base_uri, lock=lock),
        backend="json",
    )


@pytest.fixture
def sqlite_bundle(tmp_path: Path) -> StoreBundle:
    store = SqliteControlStore(str(tmp_path / "sqlite" / "control.db"))
    return StoreBundle(fleet=store, rollouts=store, backend="sqlite")


@pytest.fixture(params=["json", "sqlite"])
def bundle(request, json_bundle: StoreBundle, sqlite_bundle: StoreBundle):
    if request.param == "json":
        return json_bundle
    return sqlite_bundle


def make_device(
    device_id: str,
    *,
    tenant: str = "acme",
    labels: dict[str, str] | None = None,
    status: str = "ok",
    age_s: float | None = 5.0,
    version: str | None = "1.0.0",
    channel: str | None = "stable",
) -> DeviceRecord:
    last_seen = None
    if age_s is not None:
        last_seen = (NOW - timedelta(seconds=age_s)).isoformat()
    return DeviceRecord(
        id=device_id,
        tenant=tenant,
        labels=dict(labels or {}),
        version=version,
        channel=channel,
        status=status,
        last_seen_at=last_seen,
        created_at=NOW.isoformat(),
        updated_at=NOW.isoformat(),
    )


@pytest.fixture
def device_factory():
    return make_device


@pytest.fixture
def seed_devices(base_uri: str):
    """Write devices straight into the JSON registry used by ``json_bundle``."""

    def _seed(*devices: DeviceRecord) -> None:
        save_devices(base_uri, devices)

    return _seed


@pytest.fixture
def fixed_clock():
    return lambda: NOW


@pytest.fixture
def now() -> datetime:
    return NOW
