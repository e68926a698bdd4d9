import os
import re
from dataclasses import dataclass
from functools import lru_cache

from wavefleet_core.rollouts.types import RolloutOptions
from wavefleet_core.storage.paths import join_uri, local_path

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    control_plane_store: str
    control_root: str
    sqlite_path: str | None
    wave_interval_s: float
    heartbeat_grace_s: float
    require_ok: bool
    skip_offline: bool
    abort_on_cancel: bool
    api_key: str | None = None

    def rollout_options(self) -> RolloutOptions:
        return RolloutOptions(
            wave_interval=self.wave_interval_s,
            heartbeat_grace=self.heartbeat_grace_s,
            require_ok=self.require_ok,
            skip_offline=self.skip_offline,
            abort_on_cancel=self.abort_on_cancel,
        )

    def control_root_uri(self) -> str:
        return self.control_root

    @classmethod
    def from_env(cls) -> "Config":
        env = os.getenv("ENV", "dev").strip().lower()
        log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()

        store = os.getenv("CONTROL_PLANE_STORE", "json").strip().lower()
        allowed_stores = {"json", "sqlite"}
        if store not in allowed_stores:
            allowed = ", ".join(sorted(allowed_stores))
            raise ValueError(f"CONTROL_PLANE_STORE must be one of: {allowed}")

        control_root = os.getenv("LOCAL_CONTROL_ROOT", "./wavefleet_data").strip()
        if not control_root:
            raise ValueError("LOCAL_CONTROL_ROOT must not be empty")

        sqlite_path = os.getenv("CONTROL_SQLITE_PATH")
        if not sqlite_path:
            root_path = local_path(control_root)
            sqlite_path = join_uri(root_path, "control.db") if root_path else None
        if store == "sqlite" and not sqlite_path:
            raise ValueError(
                "CONTROL_SQLITE_PATH is required when LOCAL_CONTROL_ROOT is remote"
            )

        wave_interval_s = parse_duration(os.getenv("ROLLOUT_WAVE_INTERVAL", "8s"))
        heartbeat_grace_s = parse_duration(
            os.getenv("ROLLOUT_HEARTBEAT_GRACE", "2m")
        )
        require_ok = _parse_bool(os.getenv("ROLLOUT_REQUIRE_OK"), False)
        skip_offline = _parse_bool(os.getenv("ROLLOUT_SKIP_OFFLINE"), True)
        abort_on_cancel = _parse_bool(os.getenv("ROLLOUT_ABORT_ON_CANCEL"), True)
        api_key = os.getenv("CONTROL_API_KEY") or None

        return cls(
            env=env,
            log_level=log_level,
            control_plane_store=store,
            control_root=control_root,
            sqlite_path=sqlite_path,
            wave_interval_s=wave_interval_s,
            heartbeat_grace_s=heartbeat_grace_s,
            require_ok=require_ok,
            skip_offline=skip_offline,
            abort_on_cancel=abort_on_cancel,
            api_key=api_key,
        )


def parse_duration(value: str) -> float:
    """Parse ``500ms``, ``8s``, ``2m``, ``1h`` or bare seconds into seconds."""
    match = _DURATION_RE.match(value or "")
    if match is None:
        raise ValueError(f"Invalid duration value: {value}")
    amount = float(match.group(1))
    unit = match.group(2) or "s"
    return amount * _DURATION_UNITS[unit]


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
