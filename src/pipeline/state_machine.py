# src/pipeline/state_machine.py — v1
"""Step state machine — the only writer of a run's phase and step pointer.

Every phase change is a compare-and-set on the run's current phase and
is validated against the fixed phase table first. A step advances only
when every unit of the step is terminal (locked-approved or excluded);
a step with units waiting for a human is pinned on its review phase.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from qagate.core.errors import InvalidTransitionError
from qagate.core.models import REVIEW_STATUSES, OutputUnit, Phase, PipelineRun, UnitStatus
from qagate.pipeline.phases import (
    LEGAL_PHASE_TRANSITIONS,
    check_row,
    phases_for,
    validate_transition,
)

if TYPE_CHECKING:
    from qagate.storage.base_store import BaseEngineStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepSummary:
    """Aggregate unit state of one step."""

    step_index: int
    total: int = 0
    terminal: int = 0
    needs_review: int = 0
    in_flight: int = 0

    @property
    def all_terminal(self) -> bool:
        return self.total == self.terminal

    @classmethod
    def from_units(cls, step_index: int, units: list[OutputUnit]) -> StepSummary:
        return cls(
            step_index=step_index,
            total=len(units),
            terminal=sum(1 for u in units if u.is_terminal),
            needs_review=sum(1 for u in units if not u.is_terminal and u.status in REVIEW_STATUSES),
            in_flight=sum(1 for u in units if u.status == UnitStatus.RUNNING),
        )


class StepStateMachine:
    """Phase transitions of pipeline runs."""

    def __init__(self, store: BaseEngineStore) -> None:
        self._store = store

    async def transition(self, run: PipelineRun, new_phase: Phase, **fields: Any) -> PipelineRun:
        """Validated compare-and-set from the run's current phase."""
        step_index = validate_transition(run.phase, new_phase)
        check_row(new_phase, step_index)
        updated = await self._store.update_phase(
            run.run_id, run.phase, new_phase, step_index=step_index, **fields,
        )
        logger.info("Run %s: %s → %s (step %d)", run.run_id, run.phase.value, new_phase.value, step_index)
        return updated

    async def summarize(self, run: PipelineRun, step_index: int | None = None) -> StepSummary:
        step = run.step_index if step_index is None else step_index
        units = await self._store.list_units(run.run_id, step_index=step)
        return StepSummary.from_units(step, units)

    async def start_step(self, run: PipelineRun) -> PipelineRun:
        """Move the run onto the running phase of its current step."""
        phases = phases_for(run.step_index)
        if run.phase == Phase.UPLOAD:
            run = await self.transition(run, phases.pending)
        if phases.running is not None and run.phase in (phases.pending, phases.exit):
            run = await self.transition(run, phases.running, last_error=None)
        return run

    async def evaluate_step(self, run: PipelineRun) -> PipelineRun:
        """Aggregate the step's units and advance, pin for review, or stay."""
        summary = await self.summarize(run)
        if summary.total == 0:
            return run
        if summary.all_terminal:
            return await self.advance(run)
        if summary.needs_review and summary.in_flight == 0:
            phases = phases_for(run.step_index)
            message = f"{summary.needs_review} unit(s) of step {run.step_index} need review"
            if run.phase != phases.exit:
                return await self.transition(run, phases.exit, last_error=message)
            return await self._store.update_run(run.run_id, last_error=message)
        logger.debug(
            "Step %d of %s: %d/%d terminal, staying", run.step_index, run.run_id,
            summary.terminal, summary.total,
        )
        return run

    async def advance(self, run: PipelineRun) -> PipelineRun:
        """Move to the next step's pending phase. Partial completion never advances."""
        summary = await self.summarize(run)
        if not summary.all_terminal:
            raise InvalidTransitionError(
                f"Step {run.step_index} of {run.run_id} is not complete "
                f"({summary.terminal}/{summary.total} terminal)"
            )
        phases = phases_for(run.step_index)
        if run.phase != phases.exit:
            run = await self.transition(run, phases.exit)

        next_phase = LEGAL_PHASE_TRANSITIONS[phases.exit]
        fields: dict[str, Any] = {"step_retries": 0, "last_error": None}
        if next_phase == Phase.COMPLETED:
            fields["status"] = "completed"
        return await self.transition(run, next_phase, **fields)

    async def rollback(self, run: PipelineRun, step_index: int) -> PipelineRun:
        """Restart ``step_index``: its units and every later step's units go back to pending.

        Attempt history is kept; reset units start a new cycle with fresh
        slots and a fresh budget. Earlier steps are untouched.
        """
        if step_index > run.step_index:
            raise InvalidTransitionError(
                f"Cannot roll back {run.run_id} forward to step {step_index} (at {run.step_index})"
            )
        target = phases_for(step_index).pending
        check_row(target, step_index)

        reset = 0
        for unit in await self._store.list_units(run.run_id):
            if unit.step_index >= step_index:
                await self._store.reset_unit(unit.unit_id)
                reset += 1

        updated = await self._store.update_phase(
            run.run_id, run.phase, target,
            step_index=step_index, step_retries=0, status="active", last_error=None,
        )
        logger.info("Run %s rolled back to step %d (%d unit(s) reset)", run.run_id, step_index, reset)
        return updated

    async def freeze(self, run: PipelineRun, reason: str) -> PipelineRun:
        """Disable the run and mark it blocked."""
        logger.warning("Freezing run %s: %s", run.run_id, reason)
        return await self._store.update_run(
            run.run_id, is_enabled=False, status="blocked", last_error=reason,
        )
