# tests/unit/pipeline/test_state_machine.py — v1
"""Tests for pipeline/state_machine.py — guarded advancement, rollback and freeze."""

from __future__ import annotations

import pytest

from doubles import run_at_step
from qagate.core.errors import InvalidTransitionError, StatusConflictError
from qagate.core.models import OutputUnit, Phase, PipelineRun, UnitStatus
from qagate.pipeline.state_machine import StepStateMachine, StepSummary


def _unit(unit_id: str, step: int = 6, status: UnitStatus = UnitStatus.PENDING, **kw) -> OutputUnit:
    return OutputUnit(unit_id=unit_id, run_id="run_1", step_index=step, space_id=unit_id, status=status, **kw)


def _approved(unit_id: str, step: int = 6) -> OutputUnit:
    return _unit(unit_id, step, UnitStatus.APPROVED, locked_approved=True, asset_ref=f"{unit_id}.png")


class TestSummary:
    def test_counts(self):
        units = [
            _approved("a"),
            _unit("b", excluded=True),
            _unit("c", status=UnitStatus.NEEDS_REVIEW),
            _unit("d", status=UnitStatus.RUNNING),
        ]
        summary = StepSummary.from_units(6, units)
        assert (summary.total, summary.terminal, summary.needs_review, summary.in_flight) == (4, 2, 1, 1)
        assert not summary.all_terminal


class TestTransition:
    @pytest.mark.asyncio
    async def test_start_step_from_upload(self, store):
        run = await store.create_run(PipelineRun(run_id="run_1"))
        run = await StepStateMachine(store).start_step(run)
        assert run.phase == Phase.SPACE_ANALYSIS_RUNNING
        assert run.step_index == 0

    @pytest.mark.asyncio
    async def test_start_decision_step_stays_pending(self, store):
        run = await run_at_step(store, 4)
        run = await StepStateMachine(store).start_step(run)
        assert run.phase == Phase.CAMERA_INTENT_PENDING

    @pytest.mark.asyncio
    async def test_illegal_transition_leaves_run(self, store):
        run = await run_at_step(store, 6)
        with pytest.raises(InvalidTransitionError):
            await StepStateMachine(store).transition(run, Phase.MERGING_PENDING)
        assert (await store.get_run("run_1")).phase == Phase.OUTPUTS_PENDING

    @pytest.mark.asyncio
    async def test_stale_run_conflicts(self, store):
        machine = StepStateMachine(store)
        run = await run_at_step(store, 6)
        await machine.transition(run, Phase.OUTPUTS_IN_PROGRESS)
        with pytest.raises(StatusConflictError):
            await machine.transition(run, Phase.OUTPUTS_REVIEW)


class TestEvaluateStep:
    @pytest.mark.asyncio
    async def test_all_terminal_advances(self, store):
        run = await run_at_step(store, 6)
        await store.create_unit(_approved("a"))
        await store.create_unit(_unit("b", excluded=True))
        run = await StepStateMachine(store).evaluate_step(run)
        assert run.phase == Phase.PANORAMAS_PENDING
        assert run.step_index == 7
        assert run.step_retries == 0

    @pytest.mark.asyncio
    async def test_review_pins_exit_phase(self, store):
        machine = StepStateMachine(store)
        run = await machine.start_step(await run_at_step(store, 6))
        await store.create_unit(_approved("a"))
        await store.create_unit(_unit("b", status=UnitStatus.NEEDS_REVIEW))
        run = await machine.evaluate_step(run)
        assert run.phase == Phase.OUTPUTS_REVIEW
        assert run.step_index == 6
        assert "1 unit(s)" in run.last_error

    @pytest.mark.asyncio
    async def test_in_flight_stays(self, store):
        machine = StepStateMachine(store)
        run = await machine.start_step(await run_at_step(store, 6))
        await store.create_unit(_unit("a", status=UnitStatus.RUNNING))
        await store.create_unit(_unit("b", status=UnitStatus.NEEDS_REVIEW))
        assert (await machine.evaluate_step(run)).phase == Phase.OUTPUTS_IN_PROGRESS

    @pytest.mark.asyncio
    async def test_no_units_stays(self, store):
        run = await run_at_step(store, 6)
        assert (await StepStateMachine(store).evaluate_step(run)).phase == Phase.OUTPUTS_PENDING

    @pytest.mark.asyncio
    async def test_partial_completion_never_advances(self, store):
        run = await run_at_step(store, 6)
        await store.create_unit(_approved("a"))
        await store.create_unit(_unit("b", status=UnitStatus.QUEUED))
        with pytest.raises(InvalidTransitionError, match="not complete"):
            await StepStateMachine(store).advance(run)

    @pytest.mark.asyncio
    async def test_last_step_completes_run(self, store):
        run = await run_at_step(store, 8)
        await store.create_unit(_approved("m", step=8))
        run = await StepStateMachine(store).evaluate_step(run)
        assert run.phase == Phase.COMPLETED
        assert run.status == "completed"


class TestRollbackAndFreeze:
    @pytest.mark.asyncio
    async def test_rollback_resets_step_and_later(self, store):
        run = await run_at_step(store, 7)
        await store.create_unit(_approved("early", step=2))
        await store.create_unit(_approved("six", step=6))
        await store.create_unit(_unit("seven", step=7, status=UnitStatus.NEEDS_REVIEW))

        run = await StepStateMachine(store).rollback(run, 6)

        assert run.phase == Phase.OUTPUTS_PENDING
        assert run.step_index == 6
        assert (await store.get_unit("early")).locked_approved
        six = await store.get_unit("six")
        assert six.status == UnitStatus.PENDING
        assert not six.locked_approved
        assert six.cycle == 1
        assert (await store.get_unit("seven")).status == UnitStatus.PENDING

    @pytest.mark.asyncio
    async def test_rollback_forward_rejected(self, store):
        run = await run_at_step(store, 3)
        with pytest.raises(InvalidTransitionError):
            await StepStateMachine(store).rollback(run, 6)

    @pytest.mark.asyncio
    async def test_freeze(self, store):
        run = await run_at_step(store, 6)
        run = await StepStateMachine(store).freeze(run, "too many attempts")
        assert not run.is_enabled
        assert run.status == "blocked"
        assert run.last_error == "too many attempts"
