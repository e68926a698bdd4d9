from __future__ import annotations

import json
import os
import threading
import urllib.error
import urllib.request
from typing import Any, Mapping

from wavefleet_core.errors import AuthError, WavefleetError
from wavefleet_core.logging import configure_logging, get_logger

SERVICE_NAME = "wavefleet-device-agent"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV", "local"),
    version=os.getenv("WAVEFLEET_VERSION"),
)
logger = get_logger(__name__)


def _post_json(
    url: str,
    payload: dict[str, Any],
    timeout: int = 30,
    api_key: str | None = None,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["x-api-key"] = api_key
    request = urllib.request.Request(
        url,
        data=data,
        method="POST",
        headers=headers,
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as resp:
            raw = resp.read()
            if not raw:
                return {}
            return json.loads(raw.decode("utf-8"))
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        if exc.code == 401:
            raise AuthError(f"HTTP 401: {body}") from exc
        raise WavefleetError(f"HTTP {exc.code}: {body}") from exc
    except urllib.error.URLError as exc:
        raise WavefleetError(f"Control service unreachable: {exc.reason}") from exc


def claim(
    control_url: str,
    *,
    tenant: str,
    labels: Mapping[str, str] | None = None,
    location: str | None = None,
    version: str | None = None,
    channel: str | None = None,
    timeout: int = 30,
    api_key: str | None = None,
) -> str:
    payload: dict[str, Any] = {"tenant": tenant, "labels": dict(labels or {})}
    if location:
        payload["location"] = location
    if version:
        payload["version"] = version
    if channel:
        payload["channel"] = channel
    response = _post_json(
        f"{control_url.rstrip('/')}/api/devices/claim",
        payload,
        timeout=timeout,
        api_key=api_key,
    )
    device_id = response.get("device_id")
    if not device_id:
        raise WavefleetError("Claim response missing device_id")
    return str(device_id)


def heartbeat(
    control_url: str,
    device_id: str,
    *,
    status: str = "ok",
    timeout: int = 30,
    api_key: str | None = None,
) -> dict[str, Any]:
    return _post_json(
        f"{control_url.rstrip('/')}/api/devices/{device_id}/heartbeat",
        {"status": status},
        timeout=timeout,
        api_key=api_key,
    )


def parse_labels(raw: str | None) -> dict[str, str]:
    """Parse ``k=v,k2=v2`` into a label mapping, ignoring malformed pairs."""
    labels: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            labels[key.strip()] = value.strip()
    return labels


def run_agent(
    stop_event: threading.Event | None = None,
    max_beats: int | None = None,
) -> str:
    control_url = os.getenv("AGENT_CONTROL_URL", "http://localhost:8090")
    tenant = os.getenv("AGENT_TENANT", "default")
    device_id = os.getenv("AGENT_DEVICE_ID") or None
    labels = parse_labels(os.getenv("AGENT_LABELS"))
    status = os.getenv("AGENT_STATUS", "ok")
    interval = float(os.getenv("AGENT_HEARTBEAT_INTERVAL", "5"))
    timeout = int(os.getenv("AGENT_REQUEST_TIMEOUT", "30"))
    api_key = os.getenv("CONTROL_API_KEY") or None
    stop_event = stop_event or threading.Event()

    if device_id is None:
        device_id = claim(
            control_url,
            tenant=tenant,
            labels=labels,
            location=os.getenv("AGENT_LOCATION") or None,
            version=os.getenv("AGENT_VERSION") or None,
            channel=os.getenv("AGENT_CHANNEL") or None,
            timeout=timeout,
            api_key=api_key,
        )
        logger.info(
            "Device claimed",
            extra={"device_id": device_id, "tenant": tenant},
        )

    logger.info(
        "Device agent started",
        extra={
            "device_id": device_id,
            "control_url": control_url,
            "heartbeat_interval_s": interval,
        },
    )

    beats = 0
    while not stop_event.is_set():
        try:
            heartbeat(
                control_url,
                device_id,
                status=status,
                timeout=timeout,
                api_key=api_key,
            )
        except WavefleetError as exc:
            logger.warning(
                "Heartbeat failed",
                extra={"device_id": device_id, "error_message": str(exc)},
            )
        beats += 1
        if max_beats is not None and beats >= max_beats:
            break
        stop_event.wait(max(0.1, interval))
    return device_id


if __name__ == "__main__":
    run_agent()
