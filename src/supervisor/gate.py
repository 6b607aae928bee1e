# src/supervisor/gate.py — v1
"""Supervisor audit gate — proceed / retry / block after every worker job.

Flow per job:
  1. schema checks (supervisor.schemas)
  2. rule checks (supervisor.rules)
  3. LLM audit (supervisor.auditor), adding the consistency rule
  4. decision, appended to the decision log
  5. run update: proceed advances the step, retry consumes budget,
     block freezes the run (disabled and blocked until resumed)

Decision priority (first match wins):
  schema errors                       → block
  consistency below threshold         → block
  blocking rules                      → retry if budget and not the budget rule, else block
  poor reasoning                      → retry if budget, else block
  failed (warning) rules with budget  → retry
  otherwise                           → proceed
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from qagate.config.settings import Settings
from qagate.core.errors import InvalidTransitionError
from qagate.core.models import (
    AuditResult,
    PipelineRun,
    RuleCheck,
    SchemaCheck,
    SupervisorDecision,
    WorkerJob,
)
from qagate.logging.context import set_component_context, set_run_context
from qagate.supervisor.rules import (
    BUDGET_RULE,
    RECENT_DECISION_WINDOW,
    consistency_rule,
    evaluate_rules,
    retry_budget,
)
from qagate.supervisor.schemas import validate_job

if TYPE_CHECKING:
    from qagate.pipeline.state_machine import StepStateMachine
    from qagate.storage.base_store import BaseEngineStore
    from qagate.supervisor.auditor import SupervisorAuditor

logger = logging.getLogger(__name__)

Decision = Literal["proceed", "retry", "block"]


def decide(
    schema_checks: list[SchemaCheck],
    rule_checks: list[RuleCheck],
    audit: AuditResult,
    budget: int,
    min_consistency: float,
) -> tuple[Decision, str]:
    """Apply the decision priority. Returns (decision, reason)."""
    schema_errors = [c for c in schema_checks if not c.passed]
    if schema_errors:
        details = "; ".join(f"{c.name}: {', '.join(c.errors[:2])}" for c in schema_errors)
        return "block", f"Schema validation failed: {details}"

    if audit.consistency_score < min_consistency:
        flags = ", ".join(audit.contradiction_flags[:2])
        return "block", (
            f"LLM audit detected low consistency ({audit.consistency_score:.2f} < {min_consistency})"
            + (f": {flags}" if flags else "")
        )

    blocked = [r for r in rule_checks if r.severity == "blocked"]
    if blocked:
        if budget > 0 and not any(r.rule == BUDGET_RULE for r in blocked):
            return "retry", f"Blocking rule(s) {', '.join(r.rule for r in blocked)}; {budget} retries left"
        return "block", "; ".join(r.message for r in blocked)

    if audit.reasoning_quality == "poor":
        if budget > 0:
            return "retry", "Poor reasoning quality; retry with improved prompts"
        return "block", "Poor reasoning quality and no retry budget remaining"

    failed = [r for r in rule_checks if not r.passed]
    if failed and budget > 0:
        return "retry", f"Address {len(failed)} issue(s): {', '.join(r.rule for r in failed)}"

    return "proceed", "All checks passed"


class SupervisorGate:
    """Validate, audit and decide on completed worker jobs."""

    def __init__(
        self,
        store: BaseEngineStore,
        auditor: SupervisorAuditor,
        state_machine: StepStateMachine,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._auditor = auditor
        self._state_machine = state_machine
        self._settings = settings or Settings()

    async def supervise(self, run_id: str, job: WorkerJob) -> SupervisorDecision:
        set_run_context(run_id, step=job.step_index)
        set_component_context("supervisor")
        run = await self._store.get_run(run_id)
        previous = list(reversed(await self._store.list_decisions(run_id)))[:RECENT_DECISION_WINDOW]
        budget = retry_budget(run, self._settings)

        schema_checks = validate_job(job)
        rule_checks = evaluate_rules(job, run, schema_checks, previous, self._settings)
        audit = await self._auditor.audit(job, schema_checks, rule_checks, previous)
        consistency = consistency_rule(audit, self._settings)
        if consistency is not None:
            rule_checks.append(consistency)

        decision, reason = decide(
            schema_checks, rule_checks, audit, budget, self._settings.supervisor_min_consistency,
        )
        record = SupervisorDecision(
            run_id=run_id,
            step_index=job.step_index,
            job_id=job.job_id,
            service=job.service,
            schema_checks=tuple(schema_checks),
            rule_checks=tuple(rule_checks),
            audit=audit,
            decision=decision,
            reason=reason,
            retry_budget_remaining=budget,
        )
        await self._store.append_decision(record)
        await self._apply(run, job, decision, reason)

        logger.info(
            "Supervisor decision for job %s: %s (consistency=%.2f, budget=%d) %s",
            job.job_id, decision, audit.consistency_score, budget, reason,
        )
        return record

    async def _apply(self, run: PipelineRun, job: WorkerJob, decision: Decision, reason: str) -> None:
        if decision == "retry":
            await self._store.increment_run_counters(run.run_id, total=1, step=1)
        elif decision == "block":
            await self._state_machine.freeze(run, reason)
        elif job.step_index != run.step_index:
            logger.info(
                "Job %s belongs to step %d but run %s is at step %d; not advancing",
                job.job_id, job.step_index, run.run_id, run.step_index,
            )
        else:
            try:
                await self._state_machine.advance(run)
            except InvalidTransitionError as e:
                logger.info("Proceed recorded but step not advanced: %s", e)
                await self._store.update_run(run.run_id, step_retries=0)
