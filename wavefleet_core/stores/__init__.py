from wavefleet_core.stores.interfaces import FleetStore, RolloutStore
from wavefleet_core.stores.json_store import JsonFleetStore, JsonRolloutStore
from wavefleet_core.stores.registry import StoreBundle, get_store_bundle
from wavefleet_core.stores.sqlite_store import SqliteControlStore

__all__ = [
    "FleetStore",
    "JsonFleetStore",
    "JsonRolloutStore",
    "RolloutStore",
    "SqliteControlStore",
    "StoreBundle",
    "get_store_bundle",
]
