"""Rollout records, lifecycle and wave planning."""

from wavefleet_core.rollouts.lifecycle import can_transition, ensure_transition
from wavefleet_core.rollouts.planner import partition_waves, plan_waves
from wavefleet_core.rollouts.types import (
    ROLLOUT_STATUSES,
    RUN_STATUSES,
    RolloutOptions,
    RolloutOutcome,
    RolloutPlan,
    RolloutRecord,
    RolloutRunRecord,
    WaveResult,
)

__all__ = [
    "ROLLOUT_STATUSES",
    "RUN_STATUSES",
    "RolloutOptions",
    "RolloutOutcome",
    "RolloutPlan",
    "RolloutRecord",
    "RolloutRunRecord",
    "WaveResult",
    "can_transition",
    "ensure_transition",
    "partition_waves",
    "plan_waves",
]
