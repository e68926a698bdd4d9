from __future__ import annotations

import threading
from typing import Mapping

from wavefleet_core.fleet import store as fleet_store
from wavefleet_core.fleet.types import DeviceRecord
from wavefleet_core.rollouts import store as rollout_store
from wavefleet_core.rollouts.types import RolloutRecord, RolloutRunRecord
from wavefleet_core.stores.interfaces import FleetStore, RolloutStore


class JsonFleetStore(FleetStore):
    def __init__(self, base_uri: str, lock: threading.RLock | None = None) -> None:
        self._base_uri = base_uri
        self._lock = lock or threading.RLock()

    def load_devices(self) -> list[DeviceRecord]:
        with self._lock:
            return fleet_store.load_devices(self._base_uri)

    def get_device(self, device_id: str) -> DeviceRecord:
        with self._lock:
            return fleet_store.get_device(self._base_uri, device_id)

    def claim_device(
        self,
        *,
        tenant: str,
        labels: Mapping[str, object] | None = None,
        location: str | None = None,
        version: str | None = None,
        channel: str | None = None,
        device_id: str | None = None,
    ) -> DeviceRecord:
        with self._lock:
            return fleet_store.claim_device(
                base_uri=self._base_uri,
                tenant=tenant,
                labels=labels,
                location=location,
                version=version,
                channel=channel,
                device_id=device_id,
            )

    def record_heartbeat(
        self,
        *,
        device_id: str,
        status: str | None = None,
        last_seen_at: str | None = None,
    ) -> DeviceRecord:
        with self._lock:
            return fleet_store.record_heartbeat(
                base_uri=self._base_uri,
                device_id=device_id,
                status=status,
                last_seen_at=last_seen_at,
            )

    def fetch_devices(
        self,
        *,
        tenant: str,
        selector: Mapping[str, str] | None,
    ) -> list[DeviceRecord]:
        with self._lock:
            return fleet_store.fetch_devices(
                self._base_uri,
                tenant=tenant,
                selector=selector,
            )

    def apply_version_channel(
        self,
        *,
        device_id: str,
        version: str,
        channel: str,
    ) -> DeviceRecord:
        with self._lock:
            return fleet_store.apply_version_channel(
                base_uri=self._base_uri,
                device_id=device_id,
                version=version,
                channel=channel,
            )


class JsonRolloutStore(RolloutStore):
    def __init__(self, base_uri: str, lock: threading.RLock | None = None) -> None:
        self._base_uri = base_uri
        self._lock = lock or threading.RLock()

    def create_rollout(self, rollout: RolloutRecord) -> RolloutRecord:
        with self._lock:
            return rollout_store.create_rollout(self._base_uri, rollout)

    def get_rollout(self, rollout_id: str) -> RolloutRecord:
        with self._lock:
            return rollout_store.get_rollout(self._base_uri, rollout_id)

    def list_rollouts(self, *, tenant: str | None = None) -> list[RolloutRecord]:
        with self._lock:
            return rollout_store.list_rollouts(self._base_uri, tenant=tenant)

    def set_rollout_status(
        self,
        *,
        rollout_id: str,
        status: str,
        finished_at: str | None = None,
        expected_status: str | None = None,
    ) -> RolloutRecord:
        with self._lock:
            return rollout_store.set_rollout_status(
                self._base_uri,
                rollout_id=rollout_id,
                status=status,
                finished_at=finished_at,
                expected_status=expected_status,
            )

    def create_run(self, run: RolloutRunRecord) -> RolloutRunRecord:
        with self._lock:
            return rollout_store.create_run(self._base_uri, run)

    def complete_run(
        self,
        *,
        run_id: str,
        status: str,
        finished_at: str,
        applied: int = 0,
        failed: int = 0,
        skipped: int = 0,
    ) -> RolloutRunRecord:
        with self._lock:
            return rollout_store.complete_run(
                self._base_uri,
                run_id=run_id,
                status=status,
                finished_at=finished_at,
                applied=applied,
                failed=failed,
                skipped=skipped,
            )

    def list_runs(self, rollout_id: str) -> list[RolloutRunRecord]:
        with self._lock:
            return rollout_store.list_runs(self._base_uri, rollout_id)
