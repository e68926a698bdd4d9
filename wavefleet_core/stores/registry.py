from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from wavefleet_core.stores.interfaces import FleetStore, RolloutStore
from wavefleet_core.stores.json_store import JsonFleetStore, JsonRolloutStore
from wavefleet_core.stores.sqlite_store import SqliteControlStore

if TYPE_CHECKING:
    from wavefleet_core.config import Config


@dataclass(frozen=True)
class StoreBundle:
    fleet: FleetStore
    rollouts: RolloutStore
    backend: str


def get_store_bundle(config: Config) -> StoreBundle:
    backend = config.control_plane_store
    if backend == "json":
        lock = threading.RLock()
        base_uri = config.control_root_uri()
        return StoreBundle(
            fleet=JsonFleetStore(base_uri, lock=lock),
            rollouts=JsonRolloutStore(base_uri, lock=lock),
            backend=backend,
        )
    if backend == "sqlite":
        if not config.sqlite_path:
            raise ValueError("CONTROL_SQLITE_PATH is required for the sqlite store")
        store = SqliteControlStore(config.sqlite_path)
        return StoreBundle(fleet=store, rollouts=store, backend=backend)
    raise ValueError(f"Unsupported control-plane store backend: {backend}")
