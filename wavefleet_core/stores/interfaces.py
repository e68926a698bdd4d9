from __future__ import annotations

from typing import Mapping, Protocol

from wavefleet_core.fleet.types import DeviceRecord
from wavefleet_core.rollouts.types import RolloutRecord, RolloutRunRecord


class FleetStore(Protocol):
    def load_devices(self) -> list[DeviceRecord]:
        ...

    def get_device(self, device_id: str) -> DeviceRecord:
        ...

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
        ...

    def record_heartbeat(
        self,
        *,
        device_id: str,
        status: str | None = None,
        last_seen_at: str | None = None,
    ) -> DeviceRecord:
        ...

    def fetch_devices(
        self,
        *,
        tenant: str,
        selector: Mapping[str, str] | None,
    ) -> list[DeviceRecord]:
        ...

    def apply_version_channel(
        self,
        *,
        device_id: str,
        version: str,
        channel: str,
    ) -> DeviceRecord:
        ...


class RolloutStore(Protocol):
    def create_rollout(self, rollout: RolloutRecord) -> RolloutRecord:
        ...

    def get_rollout(self, rollout_id: str) -> RolloutRecord:
        ...

    def list_rollouts(self, *, tenant: str | None = None) -> list[RolloutRecord]:
        ...

    def set_rollout_status(
        self,
        *,
        rollout_id: str,
        status: str,
        finished_at: str | None = None,
        expected_status: str | None = None,
    ) -> RolloutRecord:
        ...

    def create_run(self, run: RolloutRunRecord) -> RolloutRunRecord:
        ...

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
        ...

    def list_runs(self, rollout_id: str) -> list[RolloutRunRecord]:
        ...
