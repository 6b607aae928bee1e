# src/api/facade.py — v2
"""Public API facade — single entry point for driving quality-gated runs.

Usage:
    from qagate.api.facade import QualityGateFacade
    gate = QualityGateFacade(settings, generator=my_generator)
    run = await gate.create_run()
    await gate.register_units(run.run_id, 6, [UnitSpec(space_id="space_kitchen", category="kitchen")])
    report = await gate.submit_step(run.run_id, 6)

Judge and auditor LLM clients are built lazily from Settings on first
use, so read-only operations (status, feedback, pause) need no API keys.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

from qagate.api.models import StepReport, UnitSpec, UnitStatusView
from qagate.batch.controller import BatchController
from qagate.calibration.store import CalibrationStore, FeedbackResult
from qagate.config.settings import Settings
from qagate.core.errors import InvalidTransitionError, RunPausedError
from qagate.core.models import (
    REVIEW_STATUSES,
    FeedbackCategory,
    OutputUnit,
    PipelineRun,
    SupervisorDecision,
    UnitStatus,
    WorkerJob,
)
from qagate.dependency.enforcer import DependencyEnforcer
from qagate.engine.executor import SleepFn, UnitExecutor
from qagate.generation.asset_loader import LocalFileAssetLoader
from qagate.ledger.attempt_ledger import AttemptLedger
from qagate.logging.context import set_run_context
from qagate.pipeline.phases import PAIRED_STEPS
from qagate.pipeline.state_machine import StepStateMachine
from qagate.retry.budget import RetryBudgetManager
from qagate.storage.store_factory import create_store

if TYPE_CHECKING:
    from qagate.generation.asset_loader import BaseAssetLoader
    from qagate.generation.base_generator import BaseAssetGenerator
    from qagate.qa.judge import QAJudge
    from qagate.storage.base_store import BaseEngineStore
    from qagate.supervisor.auditor import SupervisorAuditor
    from qagate.supervisor.gate import SupervisorGate

logger = logging.getLogger(__name__)

# Statuses from which a human approval locks the unit.
_APPROVABLE_STATUSES = REVIEW_STATUSES | {UnitStatus.REJECTED, UnitStatus.FAILED}

# Block reason of a unit stopped by the run-wide attempt ceiling; freezes the run.
_RUN_CEILING_REASON = "run_attempt_budget_exhausted"


class QualityGateFacade:
    """Wire the engine components around one store."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: BaseEngineStore | None = None,
        generator: BaseAssetGenerator | None = None,
        loader: BaseAssetLoader | None = None,
        judge: QAJudge | None = None,
        auditor: SupervisorAuditor | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.settings = settings or Settings()
        self.store = store or create_store(self.settings)
        self.calibration = CalibrationStore(self.store, self.settings)
        self.state_machine = StepStateMachine(self.store)
        self.enforcer = DependencyEnforcer(self.store)
        self.ledger = AttemptLedger(self.store)
        self._generator = generator
        self._loader = loader or LocalFileAssetLoader()
        self._judge = judge
        self._auditor = auditor
        self._sleep = sleep
        self._gate: SupervisorGate | None = None

    # --- Runs and units ---

    async def create_run(self, run_id: str | None = None, scope: str = "global") -> PipelineRun:
        run = PipelineRun(run_id=run_id or uuid.uuid4().hex[:16], scope=scope)
        created = await self.store.create_run(run)
        logger.info("Created run %s (scope=%s)", created.run_id, scope)
        return created

    async def register_units(
        self, run_id: str, step_index: int, specs: list[UnitSpec],
    ) -> list[OutputUnit]:
        await self.store.get_run(run_id)
        units = []
        for spec in specs:
            unit = OutputUnit(
                unit_id=spec.unit_id or f"{run_id}:{step_index}:{spec.space_id}:{spec.slot}",
                run_id=run_id,
                step_index=step_index,
                space_id=spec.space_id,
                slot=spec.slot,
                category=spec.category,
                prompt=spec.prompt,
                primary_ref=spec.primary_ref,
                reference_refs=list(spec.reference_refs),
                requires_reference_comparison=spec.requires_reference_comparison,
                excluded=spec.excluded,
                max_attempts=spec.max_attempts or self.settings.max_attempts_per_unit,
            )
            units.append(await self.store.create_unit(unit))
        logger.info("Registered %d unit(s) for run %s step %d", len(units), run_id, step_index)
        return units

    async def submit_step(self, run_id: str, step_index: int) -> StepReport:
        """Dispatch every pending unit of the run's current step, then evaluate the step.

        Raises:
            RunPausedError: the run is disabled or blocked.
            InvalidTransitionError: ``step_index`` is not the run's current step.
        """
        set_run_context(run_id, step=step_index)
        run = await self.store.get_run(run_id)
        if not run.is_enabled:
            raise RunPausedError(f"Run {run_id} is paused")
        if run.status == "blocked":
            raise RunPausedError(f"Run {run_id} is blocked: {run.last_error}")
        if run.step_index != step_index:
            raise InvalidTransitionError(
                f"Run {run_id} is at step {run.step_index}, cannot submit step {step_index}"
            )

        created: list[OutputUnit] = []
        if step_index in PAIRED_STEPS:
            created = await self.enforcer.ensure_pairs(
                await self.store.list_units(run_id, step_index=step_index)
            )

        run = await self.state_machine.start_step(run)
        batch = await self._controller().run(run)
        run = await self.state_machine.evaluate_step(await self.store.get_run(run_id))
        if any(o.reason == _RUN_CEILING_REASON for o in batch.outcomes):
            run = await self.state_machine.freeze(
                run, f"Run reached {self.settings.max_total_attempts_per_run} attempts",
            )
        return StepReport(run=run, batch=batch, created_units=[u.unit_id for u in created])

    async def get_unit_status(self, unit_id: str) -> UnitStatusView:
        unit = await self.store.get_unit(unit_id)
        return UnitStatusView(unit=unit, attempts=await self.ledger.history(unit))

    # --- Human review ---

    async def record_human_feedback(
        self,
        unit_id: str,
        decision: str,
        reason_category: FeedbackCategory = "other",
        reason_text: str = "",
        user_score: int | None = None,
    ) -> FeedbackResult:
        """Record a human decision, calibrate, and apply it to the unit.

        Approval locks a unit that was waiting (or failed); rejection of a
        unit waiting for review restarts it with a fresh attempt budget.
        Locked units only feed calibration.
        """
        if decision not in ("approved", "rejected"):
            raise ValueError(f"decision must be 'approved' or 'rejected', got {decision!r}")
        unit = await self.store.get_unit(unit_id)
        run = await self.store.get_run(unit.run_id)
        result = await self.calibration.record_feedback(
            unit, run.scope, decision, reason_category, reason_text, user_score,
        )

        if unit.locked_approved:
            return result
        if decision == "approved" and unit.status in _APPROVABLE_STATUSES and unit.asset_ref:
            await self.store.update_unit_status(
                unit_id, _APPROVABLE_STATUSES, UnitStatus.APPROVED,
                locked_approved=True, needs_human=False, blocked_reason=None,
            )
            logger.info("Unit %s approved by reviewer", unit_id)
            if unit.step_index == run.step_index and run.is_enabled:
                await self.state_machine.evaluate_step(await self.store.get_run(run.run_id))
        elif decision == "rejected" and unit.status in REVIEW_STATUSES:
            await self.store.reset_unit(unit_id)
            logger.info("Unit %s rejected by reviewer, reset for a new cycle", unit_id)
        return result

    # --- Run control ---

    async def pause(self, run_id: str) -> PipelineRun:
        logger.info("Pausing run %s", run_id)
        return await self.store.update_run(run_id, is_enabled=False)

    async def resume(self, run_id: str) -> PipelineRun:
        run = await self.store.get_run(run_id)
        fields: dict[str, object] = {"is_enabled": True}
        if run.status == "blocked":
            fields.update(status="active", last_error=None)
        logger.info("Resuming run %s", run_id)
        return await self.store.update_run(run_id, **fields)

    async def restart_step(self, run_id: str, step_index: int) -> PipelineRun:
        run = await self.store.get_run(run_id)
        return await self.state_machine.rollback(run, step_index)

    async def supervise_job(self, run_id: str, job: WorkerJob) -> SupervisorDecision:
        return await self._supervisor_gate().supervise(run_id, job)

    async def close(self) -> None:
        await self.store.close()

    # --- Lazy wiring ---

    def _controller(self) -> BatchController:
        if self._generator is None:
            raise ValueError("An asset generator is required to submit steps")
        executor = UnitExecutor(
            self.store,
            self._generator,
            self._get_judge(),
            self._loader,
            RetryBudgetManager(self.settings),
            self.settings,
            sleep=self._sleep,
        )
        return BatchController(self.store, executor, self.enforcer, self.settings)

    def _get_judge(self) -> QAJudge:
        if self._judge is None:
            from qagate.llm.client_factory import create_component_client
            from qagate.qa.judge import QAJudge

            self._judge = QAJudge(
                create_component_client("judge", self.settings),
                create_component_client("judge_fallback", self.settings),
                self.calibration,
                self.settings,
            )
        return self._judge

    def _supervisor_gate(self) -> SupervisorGate:
        if self._gate is None:
            from qagate.supervisor.gate import SupervisorGate

            if self._auditor is None:
                from qagate.llm.client_factory import create_component_client
                from qagate.supervisor.auditor import SupervisorAuditor

                self._auditor = SupervisorAuditor(
                    create_component_client("auditor", self.settings), self.settings,
                )
            self._gate = SupervisorGate(self.store, self._auditor, self.state_machine, self.settings)
        return self._gate
