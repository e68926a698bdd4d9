from __future__ import annotations

import threading

import pytest

from wavefleet_core.errors import InvalidTransitionError
from wavefleet_core.rollouts.control import new_rollout
from wavefleet_core.rollouts.runner import RolloutRunner
from wavefleet_core.rollouts.types import RolloutOptions


class GatedFleet:
    """Blocks the first apply until the test releases it."""

    def __init__(self, inner):
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def apply_version_channel(self, **kwargs):
        self.entered.set()
        self.release.wait(5)
        return self.inner.apply_version_channel(**kwargs)


class ExplodingFleet:
    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def fetch_devices(self, **_kwargs):
        raise RuntimeError("boom")


def _draft(rollouts, waves=2):
    return rollouts.create_rollout(
        new_rollout(tenant="acme", artifact="2.0.0", channel="beta", waves=waves)
    )


@pytest.mark.core
def test_cancel_active_rollout_aborts(
    json_bundle, seed_devices, device_factory, fixed_clock
):
    seed_devices(device_factory("d1", age_s=1), device_factory("d2", age_s=2))
    fleet = GatedFleet(json_bundle.fleet)
    runner = RolloutRunner(
        fleet,
        json_bundle.rollouts,
        RolloutOptions(wave_interval=30),
        clock=fixed_clock,
    )
    rollout = _draft(json_bundle.rollouts)

    runner.start(rollout)
    assert fleet.entered.wait(5)
    assert runner.is_active(rollout.id)
    assert runner.active_ids() == [rollout.id]
    with pytest.raises(InvalidTransitionError):
        runner.start(rollout)

    assert runner.cancel(rollout.id)
    fleet.release.set()
    outcome = runner.join(rollout.id, timeout=5)

    assert outcome.cancelled
    assert outcome.status == "aborted"
    assert [w.wave_index for w in outcome.waves] == [1]
    assert json_bundle.rollouts.get_rollout(rollout.id).status == "aborted"
    assert not runner.cancel(rollout.id)


@pytest.mark.core
def test_runner_rejects_non_draft(json_bundle, fixed_clock):
    runner = RolloutRunner(json_bundle.fleet, json_bundle.rollouts, clock=fixed_clock)
    rollout = _draft(json_bundle.rollouts)
    json_bundle.rollouts.set_rollout_status(rollout_id=rollout.id, status="running")
    with pytest.raises(InvalidTransitionError):
        runner.start(json_bundle.rollouts.get_rollout(rollout.id))


@pytest.mark.core
def test_crashed_run_is_captured(json_bundle, fixed_clock):
    runner = RolloutRunner(
        ExplodingFleet(json_bundle.fleet), json_bundle.rollouts, clock=fixed_clock
    )
    rollout = _draft(json_bundle.rollouts)

    runner.start(rollout)
    outcome = runner.join(rollout.id, timeout=5)

    assert outcome.error == "boom"
    assert outcome.status == "draft"
    assert not runner.is_active(rollout.id)


@pytest.mark.core
def test_shutdown_cancels_active_runs(
    json_bundle, seed_devices, device_factory, fixed_clock
):
    seed_devices(device_factory("d1", age_s=1), device_factory("d2", age_s=2))
    fleet = GatedFleet(json_bundle.fleet)
    runner = RolloutRunner(
        fleet,
        json_bundle.rollouts,
        RolloutOptions(wave_interval=30),
        clock=fixed_clock,
    )
    rollout = _draft(json_bundle.rollouts)
    runner.start(rollout)
    assert fleet.entered.wait(5)

    fleet.release.set()
    runner.shutdown(timeout=5)

    assert runner.active_ids() == []
    assert runner.outcome(rollout.id).status == "aborted"


@pytest.mark.core
def test_outcome_history_is_bounded(json_bundle, fixed_clock):
    runner = RolloutRunner(
        json_bundle.fleet, json_bundle.rollouts, clock=fixed_clock, max_outcomes=2
    )
    ids = []
    for _ in range(3):
        rollout = _draft(json_bundle.rollouts)
        runner.start(rollout)
        runner.join(rollout.id, timeout=5)
        ids.append(rollout.id)
    assert runner.outcome(ids[0]) is None
    assert runner.outcome(ids[2]).status == "failed"
