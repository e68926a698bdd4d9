from __future__ import annotations

import pytest

from wavefleet_core.edge import agent
from wavefleet_core.errors import WavefleetError


def test_agent_claims_then_heartbeats(monkeypatch):
    calls: list[dict] = []

    def fake_post(url, payload, timeout=30, api_key=None):
        calls.append({"url": url, "payload": payload, "api_key": api_key})
        if url.endswith("/claim"):
            return {"device_id": "dev-42"}
        return {"ok": True}

    monkeypatch.setattr(agent, "_post_json", fake_post)
    monkeypatch.setenv("AGENT_CONTROL_URL", "http://control:8090/")
    monkeypatch.setenv("AGENT_TENANT", "acme")
    monkeypatch.setenv("AGENT_LABELS", "role=kiosk,site=north")
    monkeypatch.setenv("AGENT_HEARTBEAT_INTERVAL", "0")
    monkeypatch.setenv("CONTROL_API_KEY", "secret")
    monkeypatch.delenv("AGENT_DEVICE_ID", raising=False)

    device_id = agent.run_agent(max_beats=2)

    assert device_id == "dev-42"
    assert calls[0]["url"] == "http://control:8090/api/devices/claim"
    assert calls[0]["payload"] == {
        "tenant": "acme",
        "labels": {"role": "kiosk", "site": "north"},
    }
    assert [c["url"] for c in calls[1:]] == [
        "http://control:8090/api/devices/dev-42/heartbeat"
    ] * 2
    assert calls[1]["payload"] == {"status": "ok"}
    assert all(c["api_key"] == "secret" for c in calls)


def test_agent_keeps_beating_after_errors(monkeypatch):
    beats: list[str] = []

    def flaky_post(url, payload, timeout=30, api_key=None):
        beats.append(url)
        if len(beats) == 1:
            raise WavefleetError("HTTP 503: down")
        return {"ok": True}

    monkeypatch.setattr(agent, "_post_json", flaky_post)
    monkeypatch.setenv("AGENT_DEVICE_ID", "dev-7")
    monkeypatch.setenv("AGENT_HEARTBEAT_INTERVAL", "0")

    assert agent.run_agent(max_beats=3) == "dev-7"
    assert len(beats) == 3


def test_claim_requires_device_id(monkeypatch):
    monkeypatch.setattr(agent, "_post_json", lambda *args, **kwargs: {})
    with pytest.raises(WavefleetError):
        agent.claim("http://control:8090", tenant="acme")


def test_parse_labels():
    assert agent.parse_labels("a=1, b = 2,broken,=x") == {"a": "1", "b": "2"}
    assert agent.parse_labels(None) == {}
