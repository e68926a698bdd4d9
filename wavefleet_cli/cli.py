from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

DEFAULT_CONTROL_URL = "http://localhost:8090"
CONTROL_TARGET = "local_adapter.control_service:app"


def _resolve_control_url(value: str | None) -> str:
    return (value or os.getenv("WAVEFLEET_CONTROL_URL", DEFAULT_CONTROL_URL)).rstrip(
        "/"
    )


def _request_json(
    method: str,
    url: str,
    payload: dict[str, Any] | None = None,
    timeout: int = 30,
) -> Any:
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    api_key = os.getenv("CONTROL_API_KEY")
    if api_key:
        headers["x-api-key"] = api_key
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers=headers,
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
            if not raw:
                return {}
            return json.loads(raw.decode("utf-8"))
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        detail: str | dict[str, Any] = body
        try:
            detail = json.loads(body)
        except json.JSONDecodeError:
            detail = body or exc.reason
        raise RuntimeError(f"HTTP {exc.code} {detail}") from exc


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _parse_pairs(items: list[str] | None) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for item in items or []:
        if "=" not in item:
            raise ValueError(f"Invalid key=value pair: {item}")
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Invalid key=value pair: {item}")
        parsed[key] = value.strip()
    return parsed


def _uvicorn_cmd(target: str, host: str, port: int, log_level: str) -> list[str]:
    return [
        "uvicorn",
        target,
        "--host",
        host,
        "--port",
        str(port),
        "--log-level",
        log_level,
    ]


def cmd_up(args: argparse.Namespace) -> int:
    command = _uvicorn_cmd(CONTROL_TARGET, args.host, args.port, args.log_level)
    if args.dry_run:
        print(" ".join(command))
        return 0
    try:
        return subprocess.call(command)
    except KeyboardInterrupt:
        return 0


def cmd_status(args: argparse.Namespace) -> int:
    control_url = _resolve_control_url(args.control_url)
    _print_json(_request_json("GET", f"{control_url}/health"))
    return 0


def cmd_devices(args: argparse.Namespace) -> int:
    control_url = _resolve_control_url(args.control_url)
    _print_json(_request_json("GET", f"{control_url}/api/devices"))
    return 0


def cmd_claim(args: argparse.Namespace) -> int:
    control_url = _resolve_control_url(args.control_url)
    payload: dict[str, Any] = {
        "tenant": args.tenant,
        "labels": _parse_pairs(args.label),
    }
    for key in ("location", "version", "channel", "device_id"):
        value = getattr(args, key)
        if value:
            payload[key] = value
    response = _request_json(
        "POST",
        f"{control_url}/api/devices/claim",
        payload=payload,
    )
    _print_json(response)
    return 0


def cmd_heartbeat(args: argparse.Namespace) -> int:
    control_url = _resolve_control_url(args.control_url)
    payload: dict[str, Any] = {"status": args.status}
    if args.ts:
        payload["ts"] = args.ts
    device_id = urllib.parse.quote(args.device_id, safe="")
    response = _request_json(
        "POST",
        f"{control_url}/api/devices/{device_id}/heartbeat",
        payload=payload,
    )
    _print_json(response)
    return 0


def cmd_agent(args: argparse.Namespace) -> int:
    overrides = {
        "AGENT_CONTROL_URL": _resolve_control_url(args.control_url),
        "AGENT_TENANT": args.tenant,
        "AGENT_DEVICE_ID": args.device_id,
        "AGENT_LABELS": ",".join(args.label or []),
        "AGENT_HEARTBEAT_INTERVAL": (
            str(args.interval) if args.interval is not None else None
        ),
    }
    for key, value in overrides.items():
        if value:
            os.environ[key] = value

    from wavefleet_core.edge.agent import run_agent

    try:
        device_id = run_agent(max_beats=args.beats)
    except KeyboardInterrupt:
        return 0
    _print_json({"device_id": device_id})
    return 0


def cmd_rollouts(args: argparse.Namespace) -> int:
    control_url = _resolve_control_url(args.control_url)
    url = f"{control_url}/api/rollouts"
    if args.tenant:
        url = f"{url}?{urllib.parse.urlencode({'tenant': args.tenant})}"
    _print_json(_request_json("GET", url))
    return 0


def _rollout_url(args: argparse.Namespace, suffix: str = "") -> str:
    control_url = _resolve_control_url(args.control_url)
    rollout_id = urllib.parse.quote(args.rollout_id, safe="")
    return f"{control_url}/api/rollouts/{rollout_id}{suffix}"


def cmd_rollout_create(args: argparse.Namespace) -> int:
    control_url = _resolve_control_url(args.control_url)
    payload: dict[str, Any] = {
        "tenant": args.tenant,
        "artifact": args.artifact,
        "channel": args.channel,
        "selector": _parse_pairs(args.selector),
        "waves": args.waves,
    }
    response = _request_json("POST", f"{control_url}/api/rollouts", payload=payload)
    _print_json(response)
    if args.start:
        rollout_id = urllib.parse.quote(response["id"], safe="")
        _print_json(
            _request_json("POST", f"{control_url}/api/rollouts/{rollout_id}/start")
        )
    return 0


def cmd_rollout_show(args: argparse.Namespace) -> int:
    _print_json(_request_json("GET", _rollout_url(args)))
    return 0


def cmd_rollout_start(args: argparse.Namespace) -> int:
    _print_json(_request_json("POST", _rollout_url(args, "/start")))
    return 0


def cmd_rollout_retry(args: argparse.Namespace) -> int:
    _print_json(_request_json("POST", _rollout_url(args, "/retry")))
    return 0


def cmd_rollout_cancel(args: argparse.Namespace) -> int:
    _print_json(_request_json("POST", _rollout_url(args, "/cancel")))
    return 0


def cmd_rollout_runs(args: argparse.Namespace) -> int:
    _print_json(_request_json("GET", _rollout_url(args, "/runs")))
    return 0


def cmd_rollout_simulate(args: argparse.Namespace) -> int:
    suffix = "/simulate"
    if args.waves is not None:
        suffix = f"{suffix}?{urllib.parse.urlencode({'waves': args.waves})}"
    _print_json(_request_json("POST", _rollout_url(args, suffix)))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wavefleet")
    subparsers = parser.add_subparsers(dest="command")

    up_parser = subparsers.add_parser("up", help="Run the control service")
    up_parser.add_argument("--host", default="0.0.0.0")
    up_parser.add_argument("--port", type=int, default=8090)
    up_parser.add_argument("--log-level", default="info")
    up_parser.add_argument("--dry-run", action="store_true", help="Print command only")
    up_parser.set_defaults(func=cmd_up)

    status_parser = subparsers.add_parser("status", help="Check service health")
    status_parser.add_argument("--control-url")
    status_parser.set_defaults(func=cmd_status)

    devices_parser = subparsers.add_parser("devices", help="List devices")
    devices_parser.add_argument("--control-url")
    devices_parser.set_defaults(func=cmd_devices)

    claim_parser = subparsers.add_parser("claim", help="Register a device")
    claim_parser.add_argument("--tenant", required=True)
    claim_parser.add_argument("--label", action="append", help="key=value")
    claim_parser.add_argument("--location")
    claim_parser.add_argument("--version")
    claim_parser.add_argument("--channel")
    claim_parser.add_argument("--device-id")
    claim_parser.add_argument("--control-url")
    claim_parser.set_defaults(func=cmd_claim)

    heartbeat_parser = subparsers.add_parser("heartbeat", help="Send one heartbeat")
    heartbeat_parser.add_argument("device_id")
    heartbeat_parser.add_argument(
        "--status", default="ok", choices=["ok", "warn", "crit", "unknown"]
    )
    heartbeat_parser.add_argument("--ts")
    heartbeat_parser.add_argument("--control-url")
    heartbeat_parser.set_defaults(func=cmd_heartbeat)

    agent_parser = subparsers.add_parser("agent", help="Run a device agent")
    agent_parser.add_argument("--tenant", default="default")
    agent_parser.add_argument("--device-id")
    agent_parser.add_argument("--label", action="append", help="key=value")
    agent_parser.add_argument("--interval", type=float)
    agent_parser.add_argument("--beats", type=int, help="Stop after N heartbeats")
    agent_parser.add_argument("--control-url")
    agent_parser.set_defaults(func=cmd_agent)

    rollouts_parser = subparsers.add_parser("rollouts", help="List rollouts")
    rollouts_parser.add_argument("--tenant")
    rollouts_parser.add_argument("--control-url")
    rollouts_parser.set_defaults(func=cmd_rollouts)

    rollout_parser = subparsers.add_parser("rollout", help="Manage a rollout")
    rollout_sub = rollout_parser.add_subparsers(dest="rollout_command")

    create_parser = rollout_sub.add_parser("create", help="Create a draft rollout")
    create_parser.add_argument("--tenant", required=True)
    create_parser.add_argument("--artifact", required=True)
    create_parser.add_argument("--channel", default="stable")
    create_parser.add_argument("--selector", action="append", help="key=value")
    create_parser.add_argument("--waves", type=int, default=1)
    create_parser.add_argument("--start", action="store_true", help="Start after create")
    create_parser.add_argument("--control-url")
    create_parser.set_defaults(func=cmd_rollout_create)

    for name, func, help_text in (
        ("show", cmd_rollout_show, "Show a rollout"),
        ("start", cmd_rollout_start, "Start a draft rollout"),
        ("retry", cmd_rollout_retry, "Clone and start a rollout"),
        ("cancel", cmd_rollout_cancel, "Cancel an active rollout"),
        ("runs", cmd_rollout_runs, "List wave runs"),
        ("simulate", cmd_rollout_simulate, "Plan waves without applying"),
    ):
        sub = rollout_sub.add_parser(name, help=help_text)
        sub.add_argument("rollout_id")
        sub.add_argument("--control-url")
        if name == "simulate":
            sub.add_argument("--waves", type=int)
        sub.set_defaults(func=func)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None) or not hasattr(args, "func"):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
