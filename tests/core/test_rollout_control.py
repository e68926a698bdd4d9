from __future__ import annotations

import pytest

from wavefleet_core.errors import InvalidTransitionError, NotFoundError, ValidationError
from wavefleet_core.rollouts import control
from wavefleet_core.rollouts.runner import RolloutRunner
from wavefleet_core.rollouts.types import RolloutOptions


def _runner(bundle, fixed_clock, **overrides) -> RolloutRunner:
    options = RolloutOptions(**{"wave_interval": 0, **overrides})
    return RolloutRunner(bundle.fleet, bundle.rollouts, options, clock=fixed_clock)


@pytest.mark.core
def test_create_rollout_normalizes_input(json_bundle):
    rollout = control.create_rollout(
        json_bundle.rollouts,
        tenant=" acme ",
        artifact="2.0.0",
        channel="beta",
        selector=None,
        waves=0,
    )
    assert rollout.id.startswith("ro-")
    assert rollout.tenant == "acme"
    assert rollout.selector == {}
    assert rollout.waves == 1
    assert rollout.status == "draft"
    assert json_bundle.rollouts.get_rollout(rollout.id) == rollout


@pytest.mark.core
def test_create_rollout_requires_tenant(json_bundle):
    with pytest.raises(ValidationError):
        control.create_rollout(
            json_bundle.rollouts, tenant="", artifact="2.0.0", channel="beta"
        )
    assert json_bundle.rollouts.list_rollouts() == []


@pytest.mark.core
def test_start_runs_to_completion(json_bundle, seed_devices, device_factory, fixed_clock):
    seed_devices(device_factory("d1"), device_factory("d2", age_s=10))
    runner = _runner(json_bundle, fixed_clock)
    rollout = control.create_rollout(
        json_bundle.rollouts, tenant="acme", artifact="2.0.0", channel="beta", waves=2
    )

    control.start_rollout(json_bundle.rollouts, runner, rollout.id)
    outcome = runner.join(rollout.id, timeout=5)

    assert outcome is not None
    assert outcome.status == "completed"
    assert not runner.is_active(rollout.id)
    assert json_bundle.rollouts.get_rollout(rollout.id).status == "completed"
    assert len(json_bundle.rollouts.list_runs(rollout.id)) == 2


@pytest.mark.core
def test_start_rejects_missing_and_finished_rollouts(
    json_bundle, seed_devices, device_factory, fixed_clock
):
    seed_devices(device_factory("d1"))
    runner = _runner(json_bundle, fixed_clock)
    with pytest.raises(NotFoundError):
        control.start_rollout(json_bundle.rollouts, runner, "ro-missing")

    rollout = control.create_rollout(
        json_bundle.rollouts, tenant="acme", artifact="2.0.0", channel="beta"
    )
    control.start_rollout(json_bundle.rollouts, runner, rollout.id)
    runner.join(rollout.id, timeout=5)
    with pytest.raises(InvalidTransitionError):
        control.start_rollout(json_bundle.rollouts, runner, rollout.id)


@pytest.mark.core
def test_retry_clones_failed_rollout(json_bundle, fixed_clock):
    runner = _runner(json_bundle, fixed_clock)
    original = control.create_rollout(
        json_bundle.rollouts,
        tenant="acme",
        artifact="2.0.0",
        channel="beta",
        selector={"role": "kiosk"},
        waves=3,
    )
    control.start_rollout(json_bundle.rollouts, runner, original.id)
    assert runner.join(original.id, timeout=5).status == "failed"
    failed = json_bundle.rollouts.get_rollout(original.id)

    clone = control.retry_rollout(json_bundle.rollouts, runner, original.id)
    runner.join(clone.id, timeout=5)

    assert clone.id != original.id
    assert clone.status == "draft"
    assert clone.finished_at is None
    assert (clone.tenant, clone.artifact, clone.channel, clone.selector, clone.waves) == (
        original.tenant,
        original.artifact,
        original.channel,
        original.selector,
        original.waves,
    )
    assert json_bundle.rollouts.get_rollout(original.id) == failed
    assert json_bundle.rollouts.get_rollout(clone.id).status == "failed"


@pytest.mark.core
def test_retry_missing_rollout(json_bundle, fixed_clock):
    with pytest.raises(NotFoundError):
        control.retry_rollout(
            json_bundle.rollouts, _runner(json_bundle, fixed_clock), "ro-missing"
        )


@pytest.mark.core
def test_clone_for_retry_copies_selector():
    original = control.new_rollout(
        tenant="acme", artifact="a", channel="c", selector={"k": "v"}, waves=2
    )
    clone = control.clone_for_retry(original)
    assert clone.selector == original.selector
    assert clone.selector is not original.selector


@pytest.mark.core
def test_simulate_writes_nothing(json_bundle, seed_devices, device_factory, now):
    seed_devices(
        device_factory("d1", age_s=1),
        device_factory("d2", age_s=2),
        device_factory("d3", age_s=None),
    )
    rollout = control.create_rollout(
        json_bundle.rollouts, tenant="acme", artifact="2.0.0", channel="beta", waves=1
    )

    plan = control.simulate_rollout(
        json_bundle.fleet,
        json_bundle.rollouts,
        rollout.id,
        waves=2,
        options=RolloutOptions(),
        now=now,
    )

    assert plan.total_devices == 3
    assert [wave.device_ids for wave in plan.waves] == [("d1", "d3"), ("d2",)]
    assert [d.action for d in plan.waves[0].dispositions] == ["apply", "skip_offline"]
    assert json_bundle.rollouts.get_rollout(rollout.id).status == "draft"
    assert json_bundle.rollouts.list_runs(rollout.id) == []
    assert json_bundle.fleet.get_device("d1").version == "1.0.0"
