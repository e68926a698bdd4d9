from __future__ import annotations

import uuid

import pytest

from wavefleet_core.config import get_config
from wavefleet_core.stores import (
    JsonFleetStore,
    SqliteControlStore,
    get_store_bundle,
)
from wavefleet_core.storage.documents import read_items, write_items


@pytest.mark.core
def test_store_bundle_json(monkeypatch, tmp_path):
    monkeypatch.setenv("LOCAL_CONTROL_ROOT", tmp_path.as_posix())
    get_config.cache_clear()

    stores = get_store_bundle(get_config())

    assert stores.backend == "json"
    assert isinstance(stores.fleet, JsonFleetStore)
    device = stores.fleet.claim_device(tenant="acme")
    assert stores.fleet.load_devices()[0].id == device.id
    assert (tmp_path / "control" / "devices.json").exists()


@pytest.mark.core
def test_store_bundle_sqlite(monkeypatch, tmp_path):
    monkeypatch.setenv("CONTROL_PLANE_STORE", "sqlite")
    monkeypatch.setenv("LOCAL_CONTROL_ROOT", tmp_path.as_posix())
    get_config.cache_clear()

    stores = get_store_bundle(get_config())

    assert stores.backend == "sqlite"
    assert isinstance(stores.fleet, SqliteControlStore)
    assert stores.fleet is stores.rollouts
    stores.fleet.claim_device(tenant="acme", device_id="dev-1")
    assert stores.fleet.get_device("dev-1").tenant == "acme"
    assert (tmp_path / "control.db").exists()


@pytest.mark.core
def test_documents_on_memory_filesystem():
    uri = f"memory://wavefleet-{uuid.uuid4().hex}/control/devices.json"
    assert read_items(uri, "devices") == []
    write_items(uri, "devices", [{"id": "dev-1"}, {"id": "dev-2"}])
    assert [item["id"] for item in read_items(uri, "devices")] == ["dev-1", "dev-2"]
    assert read_items(uri, "rollouts") == []
