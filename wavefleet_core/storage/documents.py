from __future__ import annotations

import json
from datetime import datetime, timezone

import fsspec

from wavefleet_core.errors import BackingUnavailable


def read_items(uri: str, key: str) -> list[dict[str, object]]:
    try:
        fs, path = fsspec.core.url_to_fs(uri)
        if not fs.exists(path):
            return []
        with fs.open(path, "rb") as handle:
            payload = json.loads(handle.read().decode("utf-8"))
    except (OSError, ValueError) as exc:
        raise BackingUnavailable(f"Unable to read {uri}: {exc}") from exc
    items = payload.get(key, []) if isinstance(payload, dict) else []
    return [item for item in items if isinstance(item, dict)]


def write_items(uri: str, key: str, items: list[dict[str, object]]) -> str:
    payload = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        key: items,
    }
    try:
        fs, path = fsspec.core.url_to_fs(uri)
        fs.makedirs("/".join(path.split("/")[:-1]), exist_ok=True)
        with fs.open(path, "wb") as handle:
            handle.write(json.dumps(payload, ensure_ascii=True).encode("utf-8"))
    except OSError as exc:
        raise BackingUnavailable(f"Unable to write {uri}: {exc}") from exc
    return uri
