from __future__ import annotations

import json
import sqlite3
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Mapping

from wavefleet_core.errors import (
    BackingUnavailable,
    DeviceApplyError,
    NotFoundError,
    ValidationError,
)
from wavefleet_core.fleet.health import snapshot_order
from wavefleet_core.fleet.selector import filter_devices
from wavefleet_core.fleet.store import (
    new_device,
    normalize_seen_at,
    normalize_status,
)
from wavefleet_core.fleet.types import DeviceRecord
from wavefleet_core.rollouts.lifecycle import ensure_run_transition
from wavefleet_core.rollouts.store import check_status_change, order_rollouts
from wavefleet_core.rollouts.types import RolloutRecord, RolloutRunRecord

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS devices (
        id TEXT PRIMARY KEY,
        tenant TEXT NOT NULL,
        labels TEXT,
        location TEXT,
        version TEXT,
        channel TEXT,
        status TEXT,
        last_seen_at TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_devices_tenant ON devices(tenant)",
    """
    CREATE TABLE IF NOT EXISTS rollouts (
        id TEXT PRIMARY KEY,
        tenant TEXT NOT NULL,
        artifact TEXT,
        channel TEXT,
        selector TEXT,
        waves INTEGER,
        status TEXT,
        created_at TEXT,
        finished_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_rollouts_tenant ON rollouts(tenant)",
    """
    CREATE TABLE IF NOT EXISTS rollout_runs (
        id TEXT PRIMARY KEY,
        rollout_id TEXT NOT NULL REFERENCES rollouts(id) ON DELETE CASCADE,
        wave_index INTEGER NOT NULL,
        device_ids TEXT,
        status TEXT NOT NULL,
        started_at TEXT NOT NULL,
        finished_at TEXT,
        applied INTEGER DEFAULT 0,
        failed INTEGER DEFAULT 0,
        skipped INTEGER DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_rollout_runs_ro ON rollout_runs(rollout_id, wave_index)",
)

_DEVICE_COLUMNS = (
    "id, tenant, labels, location, version, channel, status, "
    "last_seen_at, created_at, updated_at"
)
_ROLLOUT_COLUMNS = (
    "id, tenant, artifact, channel, selector, waves, status, created_at, finished_at"
)
_RUN_COLUMNS = (
    "id, rollout_id, wave_index, device_ids, status, started_at, finished_at, "
    "applied, failed, skipped"
)


@dataclass(frozen=True)
class SqliteControlStore:
    """Devices, rollouts and runs in a single SQLite file.

    Every operation opens its own connection so the store can be shared by
    the request handlers and the rollout threads.
    """

    path: str
    timeout_s: float = 30.0

    def __post_init__(self) -> None:
        try:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackingUnavailable(f"SQLite path unusable: {exc}") from exc
        self._init_db()

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self.path, timeout=self.timeout_s)) as conn:
                conn.execute("PRAGMA foreign_keys = ON")
                with conn:
                    yield conn
        except sqlite3.Error as exc:
            raise BackingUnavailable(f"SQLite control store failed: {exc}") from exc

    def _init_db(self) -> None:
        with self._session() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    # Devices

    def load_devices(self) -> list[DeviceRecord]:
        with self._session() as conn:
            rows = conn.execute(f"SELECT {_DEVICE_COLUMNS} FROM devices").fetchall()
        return snapshot_order(_device_from_row(row) for row in rows)

    def get_device(self, device_id: str) -> DeviceRecord:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {_DEVICE_COLUMNS} FROM devices WHERE id = ?",
                (device_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Device not found: {device_id}")
        return _device_from_row(row)

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
        device = new_device(
            tenant=tenant,
            labels=labels,
            location=location,
            version=version,
            channel=channel,
            device_id=device_id,
        )
        with self._session() as conn:
            conn.execute(
                f"""
                INSERT INTO devices ({_DEVICE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    tenant = excluded.tenant,
                    labels = excluded.labels,
                    location = excluded.location,
                    version = excluded.version,
                    channel = excluded.channel,
                    status = excluded.status,
                    last_seen_at = excluded.last_seen_at,
                    updated_at = excluded.updated_at
                """,
                (
                    device.id,
                    device.tenant,
                    json.dumps(device.labels, ensure_ascii=True),
                    device.location,
                    device.version,
                    device.channel,
                    device.status,
                    device.last_seen_at,
                    device.created_at,
                    device.updated_at,
                ),
            )
        return device

    def record_heartbeat(
        self,
        *,
        device_id: str,
        status: str | None = None,
        last_seen_at: str | None = None,
    ) -> DeviceRecord:
        resolved_status = normalize_status(status)
        now = _utc_now()
        seen_at = normalize_seen_at(last_seen_at, now)
        with self._session() as conn:
            cursor = conn.execute(
                "UPDATE devices SET status = ?, last_seen_at = ?, updated_at = ? "
                "WHERE id = ?",
                (resolved_status, seen_at, now, device_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Device not found: {device_id}")
        return self.get_device(device_id)

    def fetch_devices(
        self,
        *,
        tenant: str,
        selector: Mapping[str, str] | None,
    ) -> list[DeviceRecord]:
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT {_DEVICE_COLUMNS} FROM devices WHERE (? = '' OR tenant = ?)",
                (tenant or "", tenant or ""),
            ).fetchall()
        devices = snapshot_order(_device_from_row(row) for row in rows)
        return filter_devices(devices, tenant, selector)

    def apply_version_channel(
        self,
        *,
        device_id: str,
        version: str,
        channel: str,
    ) -> DeviceRecord:
        with self._session() as conn:
            cursor = conn.execute(
                "UPDATE devices SET version = ?, channel = ?, updated_at = ? "
                "WHERE id = ?",
                (version, channel, _utc_now(), device_id),
            )
            if cursor.rowcount == 0:
                raise DeviceApplyError(f"Device not found: {device_id}")
        return self.get_device(device_id)

    # Rollouts

    def create_rollout(self, rollout: RolloutRecord) -> RolloutRecord:
        with self._session() as conn:
            try:
                conn.execute(
                    f"INSERT INTO rollouts ({_ROLLOUT_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        rollout.id,
                        rollout.tenant,
                        rollout.artifact,
                        rollout.channel,
                        json.dumps(rollout.selector, ensure_ascii=True),
                        rollout.waves,
                        rollout.status,
                        rollout.created_at,
                        rollout.finished_at,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(f"Rollout already exists: {rollout.id}") from exc
        return rollout

    def get_rollout(self, rollout_id: str) -> RolloutRecord:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT {_ROLLOUT_COLUMNS} FROM rollouts WHERE id = ?",
                (rollout_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Rollout not found: {rollout_id}")
        return _rollout_from_row(row)

    def list_rollouts(self, *, tenant: str | None = None) -> list[RolloutRecord]:
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT {_ROLLOUT_COLUMNS} FROM rollouts WHERE (? = '' OR tenant = ?)",
                (tenant or "", tenant or ""),
            ).fetchall()
        return order_rollouts(_rollout_from_row(row) for row in rows)

    def set_rollout_status(
        self,
        *,
        rollout_id: str,
        status: str,
        finished_at: str | None = None,
        expected_status: str | None = None,
    ) -> RolloutRecord:
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                f"SELECT {_ROLLOUT_COLUMNS} FROM rollouts WHERE id = ?",
                (rollout_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Rollout not found: {rollout_id}")
            existing = _rollout_from_row(row)
            check_status_change(existing, status, expected_status)
            conn.execute(
                "UPDATE rollouts SET status = ?, finished_at = COALESCE(?, finished_at) "
                "WHERE id = ?",
                (status, finished_at, rollout_id),
            )
        return self.get_rollout(rollout_id)

    # Runs

    def create_run(self, run: RolloutRunRecord) -> RolloutRunRecord:
        with self._session() as conn:
            exists = conn.execute(
                "SELECT 1 FROM rollouts WHERE id = ?",
                (run.rollout_id,),
            ).fetchone()
            if exists is None:
                raise NotFoundError(f"Rollout not found: {run.rollout_id}")
            conn.execute(
                f"INSERT OR IGNORE INTO rollout_runs ({_RUN_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    run.id,
                    run.rollout_id,
                    run.wave_index,
                    json.dumps(list(run.device_ids)),
                    run.status,
                    run.started_at,
                    run.finished_at,
                    run.applied,
                    run.failed,
                    run.skipped,
                ),
            )
            row = conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM rollout_runs WHERE id = ?",
                (run.id,),
            ).fetchone()
        return _run_from_row(row)

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
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT status FROM rollout_runs WHERE id = ?",
                (run_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Run not found: {run_id}")
            ensure_run_transition(row[0], status)
            conn.execute(
                """
                UPDATE rollout_runs
                SET status = ?, finished_at = ?, applied = ?, failed = ?, skipped = ?
                WHERE id = ?
                """,
                (status, finished_at, applied, failed, skipped, run_id),
            )
            updated = conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM rollout_runs WHERE id = ?",
                (run_id,),
            ).fetchone()
        return _run_from_row(updated)

    def list_runs(self, rollout_id: str) -> list[RolloutRunRecord]:
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM rollout_runs WHERE rollout_id = ? "
                "ORDER BY wave_index ASC",
                (rollout_id,),
            ).fetchall()
        return [_run_from_row(row) for row in rows]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json(raw: str | None, default: object) -> object:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


def _device_from_row(row: tuple) -> DeviceRecord:
    labels = _load_json(row[2], {})
    return DeviceRecord(
        id=row[0],
        tenant=row[1],
        labels={str(k): str(v) for k, v in labels.items()}
        if isinstance(labels, dict)
        else {},
        location=row[3],
        version=row[4],
        channel=row[5],
        status=row[6] or "unknown",
        last_seen_at=row[7],
        created_at=row[8] or "",
        updated_at=row[9] or "",
    )


def _rollout_from_row(row: tuple) -> RolloutRecord:
    selector = _load_json(row[4], {})
    return RolloutRecord(
        id=row[0],
        tenant=row[1],
        artifact=row[2] or "",
        channel=row[3] or "",
        selector={str(k): str(v) for k, v in selector.items()}
        if isinstance(selector, dict)
        else {},
        waves=int(row[5] or 1),
        status=row[6],
        created_at=row[7] or "",
        finished_at=row[8],
    )


def _run_from_row(row: tuple) -> RolloutRunRecord:
    device_ids = _load_json(row[3], [])
    return RolloutRunRecord(
        id=row[0],
        rollout_id=row[1],
        wave_index=int(row[2]),
        device_ids=tuple(str(item) for item in device_ids)
        if isinstance(device_ids, list)
        else (),
        status=row[4],
        started_at=row[5],
        finished_at=row[6],
        applied=int(row[7] or 0),
        failed=int(row[8] or 0),
        skipped=int(row[9] or 0),
    )
