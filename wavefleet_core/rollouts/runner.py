from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass

from wavefleet_core.errors import InvalidTransitionError
from wavefleet_core.logging import get_logger
from wavefleet_core.rollouts.orchestrator import Clock, WaveOrchestrator
from wavefleet_core.rollouts.types import (
    ROLLOUT_DRAFT,
    RolloutOptions,
    RolloutOutcome,
    RolloutRecord,
)
from wavefleet_core.stores.interfaces import FleetStore, RolloutStore

logger = get_logger(__name__)


@dataclass
class _ActiveRun:
    rollout_id: str
    cancel_event: threading.Event
    thread: threading.Thread


class RolloutRunner:
    """Runs each started rollout on its own daemon thread."""

    def __init__(
        self,
        fleet: FleetStore,
        rollouts: RolloutStore,
        options: RolloutOptions | None = None,
        *,
        clock: Clock | None = None,
        max_outcomes: int = 100,
    ) -> None:
        self.options = options or RolloutOptions()
        self._orchestrator = WaveOrchestrator(
            fleet,
            rollouts,
            self.options,
            clock=clock,
        )
        self._lock = threading.Lock()
        self._active: dict[str, _ActiveRun] = {}
        self._outcomes: OrderedDict[str, RolloutOutcome] = OrderedDict()
        self._max_outcomes = max(1, max_outcomes)

    def start(self, rollout: RolloutRecord) -> None:
        if rollout.status != ROLLOUT_DRAFT:
            raise InvalidTransitionError(
                f"Rollout {rollout.id} is {rollout.status}, expected {ROLLOUT_DRAFT}"
            )
        with self._lock:
            if rollout.id in self._active:
                raise InvalidTransitionError(f"Rollout already active: {rollout.id}")
            cancel_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(rollout, cancel_event),
                name=f"rollout-{rollout.id}",
                daemon=True,
            )
            self._active[rollout.id] = _ActiveRun(
                rollout_id=rollout.id,
                cancel_event=cancel_event,
                thread=thread,
            )
            thread.start()

    def cancel(self, rollout_id: str) -> bool:
        with self._lock:
            active = self._active.get(rollout_id)
        if active is None:
            return False
        active.cancel_event.set()
        logger.info("Rollout cancel requested", extra={"rollout_id": rollout_id})
        return True

    def is_active(self, rollout_id: str) -> bool:
        with self._lock:
            return rollout_id in self._active

    def active_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._active)

    def outcome(self, rollout_id: str) -> RolloutOutcome | None:
        with self._lock:
            return self._outcomes.get(rollout_id)

    def join(self, rollout_id: str, timeout: float | None = None) -> RolloutOutcome | None:
        with self._lock:
            active = self._active.get(rollout_id)
        if active is not None:
            active.thread.join(timeout)
        return self.outcome(rollout_id)

    def shutdown(self, timeout: float = 5.0) -> None:
        with self._lock:
            active = list(self._active.values())
        for run in active:
            run.cancel_event.set()
        for run in active:
            run.thread.join(timeout)
        if active:
            logger.info("Rollout runner stopped %d active runs", len(active))

    def _run(self, rollout: RolloutRecord, cancel_event: threading.Event) -> None:
        try:
            outcome = self._orchestrator.run(rollout, cancel_event)
        except Exception as exc:
            logger.exception(
                "Rollout run crashed",
                extra={"rollout_id": rollout.id, "error_message": str(exc)},
            )
            outcome = RolloutOutcome(
                rollout_id=rollout.id,
                status=rollout.status,
                cancelled=cancel_event.is_set(),
                error=str(exc),
            )
        with self._lock:
            self._active.pop(rollout.id, None)
            self._outcomes[rollout.id] = outcome
            while len(self._outcomes) > self._max_outcomes:
                self._outcomes.popitem(last=False)
