from __future__ import annotations

import json

from wavefleet_cli import cli


def _capture(monkeypatch, response=None):
    calls: list[dict] = []

    def fake_request(method, url, payload=None, timeout=30, **_kwargs):
        calls.append({"method": method, "url": url, "payload": payload})
        return response if response is not None else {"ok": True}

    monkeypatch.setattr(cli, "_request_json", fake_request)
    return calls


def test_cli_status(monkeypatch, capsys):
    calls = _capture(monkeypatch, {"status": "ok"})
    code = cli.main(["status", "--control-url", "http://localhost:9000/"])
    assert code == 0
    assert calls[0]["url"] == "http://localhost:9000/health"
    assert json.loads(capsys.readouterr().out) == {"status": "ok"}


def test_cli_claim_and_heartbeat(monkeypatch):
    calls = _capture(monkeypatch, {"device_id": "dev-1"})
    assert (
        cli.main(
            [
                "claim",
                "--tenant",
                "acme",
                "--label",
                "role=kiosk",
                "--label",
                "site=north",
                "--channel",
                "stable",
            ]
        )
        == 0
    )
    assert calls[0]["url"] == "http://localhost:8090/api/devices/claim"
    assert calls[0]["payload"] == {
        "tenant": "acme",
        "labels": {"role": "kiosk", "site": "north"},
        "channel": "stable",
    }

    assert cli.main(["heartbeat", "dev-1", "--status", "warn"]) == 0
    assert calls[1]["url"].endswith("/api/devices/dev-1/heartbeat")
    assert calls[1]["payload"] == {"status": "warn"}


def test_cli_rollout_create_and_start(monkeypatch, capsys):
    calls = _capture(monkeypatch, {"id": "ro-1", "status": "draft"})
    code = cli.main(
        [
            "rollout",
            "create",
            "--tenant",
            "acme",
            "--artifact",
            "2.0.0",
            "--selector",
            "role=kiosk",
            "--waves",
            "3",
            "--start",
        ]
    )
    assert code == 0
    assert calls[0]["method"] == "POST"
    assert calls[0]["payload"] == {
        "tenant": "acme",
        "artifact": "2.0.0",
        "channel": "stable",
        "selector": {"role": "kiosk"},
        "waves": 3,
    }
    assert calls[1]["url"] == "http://localhost:8090/api/rollouts/ro-1/start"


def test_cli_rollout_subcommands(monkeypatch):
    calls = _capture(monkeypatch)
    for argv in (
        ["rollout", "start", "ro-1"],
        ["rollout", "retry", "ro-1"],
        ["rollout", "cancel", "ro-1"],
        ["rollout", "runs", "ro-1"],
        ["rollout", "show", "ro-1"],
        ["rollout", "simulate", "ro-1", "--waves", "4"],
        ["rollouts", "--tenant", "acme"],
        ["devices"],
    ):
        assert cli.main(argv) == 0
    assert [(c["method"], c["url"].split("8090")[1]) for c in calls] == [
        ("POST", "/api/rollouts/ro-1/start"),
        ("POST", "/api/rollouts/ro-1/retry"),
        ("POST", "/api/rollouts/ro-1/cancel"),
        ("GET", "/api/rollouts/ro-1/runs"),
        ("GET", "/api/rollouts/ro-1"),
        ("POST", "/api/rollouts/ro-1/simulate?waves=4"),
        ("GET", "/api/rollouts?tenant=acme"),
        ("GET", "/api/devices"),
    ]


def test_cli_control_url_from_env(monkeypatch):
    calls = _capture(monkeypatch)
    monkeypatch.setenv("WAVEFLEET_CONTROL_URL", "http://control:8000")
    assert cli.main(["devices"]) == 0
    assert calls[0]["url"] == "http://control:8000/api/devices"


def test_cli_bad_selector_reports_error(monkeypatch, capsys):
    _capture(monkeypatch)
    code = cli.main(
        ["rollout", "create", "--tenant", "acme", "--artifact", "a", "--selector", "x"]
    )
    assert code == 1
    assert "Invalid key=value pair" in capsys.readouterr().err


def test_cli_http_error_reports(monkeypatch, capsys):
    def failing(method, url, payload=None, timeout=30):
        raise RuntimeError("HTTP 409 {'detail': 'already running'}")

    monkeypatch.setattr(cli, "_request_json", failing)
    assert cli.main(["rollout", "start", "ro-1"]) == 1
    assert "HTTP 409" in capsys.readouterr().err


def test_cli_up_dry_run(capsys):
    code = cli.main(["up", "--dry-run", "--port", "9001"])
    assert code == 0
    output = capsys.readouterr().out
    assert "local_adapter.control_service:app" in output
    assert "--port 9001" in output


def test_cli_without_command_prints_help(capsys):
    assert cli.main([]) == 2
    assert cli.main(["rollout"]) == 2
