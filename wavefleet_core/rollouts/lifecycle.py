from __future__ import annotations

from wavefleet_core.errors import InvalidTransitionError
from wavefleet_core.rollouts.types import (
    ROLLOUT_ABORTED,
    ROLLOUT_COMPLETED,
    ROLLOUT_DRAFT,
    ROLLOUT_FAILED,
    ROLLOUT_RUNNING,
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_PARTIAL,
    RUN_RUNNING,
)

ROLLOUT_TRANSITIONS: dict[str, frozenset[str]] = {
    ROLLOUT_DRAFT: frozenset({ROLLOUT_RUNNING, ROLLOUT_FAILED}),
    ROLLOUT_RUNNING: frozenset({ROLLOUT_COMPLETED, ROLLOUT_FAILED, ROLLOUT_ABORTED}),
    ROLLOUT_COMPLETED: frozenset(),
    ROLLOUT_FAILED: frozenset(),
    ROLLOUT_ABORTED: frozenset(),
}

RUN_TRANSITIONS: dict[str, frozenset[str]] = {
    RUN_RUNNING: frozenset({RUN_COMPLETED, RUN_PARTIAL, RUN_FAILED}),
    RUN_COMPLETED: frozenset(),
    RUN_PARTIAL: frozenset(),
    RUN_FAILED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ROLLOUT_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Rollout cannot move from {current} to {target}"
        )


def ensure_run_transition(current: str, target: str) -> None:
    if target not in RUN_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(f"Run cannot move from {current} to {target}")


def is_terminal(status: str) -> bool:
    return status in ROLLOUT_TRANSITIONS and not ROLLOUT_TRANSITIONS[status]
