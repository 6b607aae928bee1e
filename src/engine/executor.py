# src/engine/executor.py — v1
"""Per-unit execution loop: generate → judge → decide, until approve or block.

Dispatch is idempotent. The unit is moved queued → running with a
compare-and-set and every attempt claims its (unit, cycle, index) slot
before the generator is called; a caller that loses either race skips.

Failures of one unit never escape as exceptions: generation errors,
timeouts, unreadable assets and judge crashes become failed attempts
routed through the retry budget. A unit rewound underneath the loop (a
step rollback) ends the loop as skipped. Only StorageError propagates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from qagate.config.settings import Settings
from qagate.core.errors import (
    RunCeilingError,
    StatusConflictError,
    StorageError,
    TerminalUnitError,
)
from qagate.core.models import (
    AttemptRecord,
    OutputUnit,
    QAIssue,
    QAReason,
    QAVerdict,
    UnitStatus,
)
from qagate.dependency.enforcer import check_dispatchable
from qagate.engine.outcome import UnitOutcome
from qagate.generation.asset_loader import AssetLoadError
from qagate.generation.base_generator import GenerationResult
from qagate.ledger.attempt_ledger import AttemptLedger
from qagate.llm.models import ImageInput
from qagate.logging.context import set_unit_context
from qagate.qa.judge import JudgeContext
from qagate.retry.budget import RetryBudgetManager

if TYPE_CHECKING:
    from qagate.generation.asset_loader import BaseAssetLoader
    from qagate.generation.base_generator import BaseAssetGenerator
    from qagate.qa.judge import QAJudge
    from qagate.storage.base_store import BaseEngineStore

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


class UnitExecutor:
    """Drive one output unit through its attempt loop."""

    def __init__(
        self,
        store: BaseEngineStore,
        generator: BaseAssetGenerator,
        judge: QAJudge,
        loader: BaseAssetLoader,
        budget: RetryBudgetManager | None = None,
        settings: Settings | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._generator = generator
        self._judge = judge
        self._loader = loader
        self._settings = settings or Settings()
        self._budget = budget or RetryBudgetManager(self._settings)
        self._ledger = AttemptLedger(store)
        self._sleep = sleep

    async def execute(
        self,
        unit_id: str,
        *,
        scope: str = "global",
        anchor_ref: str | None = None,
    ) -> UnitOutcome:
        """Run the attempt loop for a queued unit.

        Raises:
            DependencyError: a dependent unit was dispatched without an anchor.
            StorageError: a transition could not be persisted.
        """
        set_unit_context(unit_id, component="executor")
        unit = await self._store.get_unit(unit_id)
        check_dispatchable(unit, anchor_ref)

        try:
            unit = await self._store.update_unit_status(
                unit_id, UnitStatus.QUEUED, UnitStatus.RUNNING, anchor_ref=anchor_ref,
            )
        except (StatusConflictError, TerminalUnitError) as e:
            logger.info("Skipping dispatch of %s: %s", unit_id, e)
            return UnitOutcome(unit_id=unit_id, status=unit.status, skipped=True, reason=str(e))

        try:
            return await self._loop(unit, scope, anchor_ref)
        except (StatusConflictError, TerminalUnitError) as e:
            current = await self._store.get_unit(unit_id)
            logger.warning("Unit %s changed while its attempt loop ran: %s", unit_id, e)
            return UnitOutcome(
                unit_id=unit_id, status=current.status, attempts=current.attempt_count,
                skipped=True, reason="superseded",
            )

    async def _loop(self, unit: OutputUnit, scope: str, anchor_ref: str | None) -> UnitOutcome:
        unit_id = unit.unit_id
        if unit.attempt_count >= unit.max_attempts:
            return await self._block(unit, "max_attempts_reached", unit.last_qa_report)

        history = await self._ledger.history(unit)
        guidance = self._resume_guidance(history)

        while True:
            try:
                attempt_index = await self._ledger.reserve(unit, run_ceiling=self._budget.run_ceiling)
            except RunCeilingError as e:
                logger.warning("%s", e)
                return await self._block(unit, "run_attempt_budget_exhausted", unit.last_qa_report)
            if attempt_index is None:
                unit = await self._store.update_unit_status(
                    unit_id, UnitStatus.RUNNING, UnitStatus.FAILED,
                    blocked_reason={"error": "ATTEMPT_SLOT_TAKEN"},
                )
                return UnitOutcome(
                    unit_id=unit_id, status=unit.status, attempts=unit.attempt_count,
                    skipped=True, reason="attempt_slot_taken",
                )

            logger.info("Attempt %d/%d for %s", attempt_index, unit.max_attempts, unit_id)
            verdict, asset_ref, error = await self._attempt(unit, scope, guidance, anchor_ref)

            counted = unit.model_copy(update={"attempt_count": attempt_index})
            run_attempts = await self._ledger.run_total(unit.run_id) + 1
            action = self._budget.next_action(counted, verdict, history, run_attempts)

            record = await self._ledger.append(
                unit,
                attempt_index,
                prompt=unit.prompt,
                action="generation_failed" if error else action.kind,
                correction_guidance=guidance,
                anchor_ref=anchor_ref,
                asset_ref=asset_ref,
                verdict=verdict,
                error=error,
            )
            history = [*history, record]

            if action.kind == "approve":
                unit = await self._store.update_unit_status(
                    unit_id, UnitStatus.RUNNING, UnitStatus.APPROVED,
                    attempt_count=attempt_index,
                    locked_approved=True,
                    needs_human=False,
                    asset_ref=asset_ref,
                    last_qa_report=verdict,
                    blocked_reason=None,
                )
                logger.info("Unit %s approved on attempt %d (score %d)", unit_id, attempt_index, verdict.score)
                return UnitOutcome(
                    unit_id=unit_id, status=unit.status, attempts=attempt_index,
                    asset_ref=asset_ref, reason=action.reason,
                )

            unit = await self._store.update_unit_status(
                unit_id, UnitStatus.RUNNING, UnitStatus.RUNNING,
                attempt_count=attempt_index,
                asset_ref=asset_ref,
                last_qa_report=verdict,
            )
            if action.kind == "block_for_human":
                return await self._block(unit, action.reason, verdict)

            guidance = action.guidance
            if not await self._run_enabled(unit.run_id):
                unit = await self._store.update_unit_status(
                    unit_id, UnitStatus.RUNNING, UnitStatus.REJECTED,
                )
                logger.info("Run %s paused; %s left rejected after %d attempts", unit.run_id, unit_id, attempt_index)
                return UnitOutcome(
                    unit_id=unit_id, status=unit.status, attempts=attempt_index,
                    asset_ref=asset_ref, reason="paused",
                )

            delay = self._budget.retry_delay_s(attempt_index)
            logger.info("Retrying %s in %.1fs (%s)", unit_id, delay, action.reason)
            await self._sleep(delay)

    # --- One attempt ---

    async def _attempt(
        self,
        unit: OutputUnit,
        scope: str,
        guidance: str | None,
        anchor_ref: str | None,
    ) -> tuple[QAVerdict, str | None, str | None]:
        """Generate and judge once. Returns (verdict, asset_ref, error)."""
        result = await self._generate(unit, guidance, anchor_ref)
        if not result.ok:
            error = result.error or "generation returned no asset"
            return _failure_verdict(error), None, error

        asset_ref = result.asset_ref
        try:
            asset = await self._loader.load(asset_ref)  # type: ignore[arg-type]
            anchor = await self._loader.load(anchor_ref) if anchor_ref else None
        except AssetLoadError as e:
            return _failure_verdict(str(e)), asset_ref, str(e)
        except StorageError:
            raise
        except Exception as e:  # loader failures become failed attempts
            error = f"{type(e).__name__}: {e}"
            logger.warning("Loading %s for %s failed: %s", asset_ref, unit.unit_id, error)
            return _failure_verdict(error), asset_ref, error

        context = JudgeContext(
            category=unit.category,
            step_index=unit.step_index,
            scope=scope,
            prompt=unit.prompt,
            requires_reference_comparison=unit.requires_reference_comparison,
            references=await self._load_references(unit),
            anchor=anchor,
        )
        try:
            verdict = await self._judge.evaluate(asset, context)
        except StorageError:
            raise
        except Exception as e:  # a crashed judgment is a failed judgment
            logger.exception("Judge failed on %s", unit.unit_id)
            return _failure_verdict(f"{type(e).__name__}: {e}", "judge_failed"), asset_ref, None
        return verdict, asset_ref, None

    async def _generate(
        self, unit: OutputUnit, guidance: str | None, anchor_ref: str | None,
    ) -> GenerationResult:
        try:
            return await asyncio.wait_for(
                self._generator.generate(
                    unit.prompt,
                    unit.primary_ref,
                    correction_guidance=guidance,
                    anchor_ref=anchor_ref,
                ),
                timeout=self._settings.generation_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("Generation for %s timed out after %ss", unit.unit_id, self._settings.generation_timeout_s)
            return GenerationResult(error="TIMEOUT: generation timed out")
        except Exception as e:  # generator failures become failed attempts
            logger.warning("Generation for %s failed: %s", unit.unit_id, e)
            return GenerationResult(error=f"{type(e).__name__}: {e}")

    async def _load_references(self, unit: OutputUnit) -> list[ImageInput]:
        references: list[ImageInput] = []
        for ref in unit.reference_refs:
            try:
                references.append(await self._loader.load(ref))
            except StorageError:
                raise
            except Exception as e:  # an unreadable reference is dropped
                logger.warning("Reference %s of %s unavailable: %s", ref, unit.unit_id, e)
        return references

    # --- Helpers ---

    async def _block(
        self, unit: OutputUnit, reason: str, verdict: QAVerdict | None,
    ) -> UnitOutcome:
        blocked_reason: dict[str, Any] = {"error": reason.upper(), "attempts": unit.attempt_count}
        if verdict is not None:
            blocked_reason["reason_codes"] = verdict.reason_codes
            blocked_reason["score"] = verdict.score
        unit = await self._store.update_unit_status(
            unit.unit_id, UnitStatus.RUNNING, UnitStatus.NEEDS_REVIEW,
            needs_human=True,
            blocked_reason=blocked_reason,
        )
        logger.warning("Unit %s needs human review: %s", unit.unit_id, reason)
        return UnitOutcome(
            unit_id=unit.unit_id, status=unit.status, attempts=unit.attempt_count,
            asset_ref=unit.asset_ref, reason=reason,
        )

    async def _run_enabled(self, run_id: str) -> bool:
        run = await self._store.get_run(run_id)
        return run.is_enabled and run.status != "blocked"

    def _resume_guidance(self, history: list[AttemptRecord]) -> str | None:
        """Guidance for the first attempt of a re-dispatch within the same cycle."""
        if not history:
            return None
        last = history[-1]
        if last.verdict is None:
            return last.correction_guidance
        return self._budget.build_guidance(last.verdict, history[:-1]) or None


def _failure_verdict(error: str, issue_type: str = "generation_failed") -> QAVerdict:
    code = "TIMEOUT" if error.startswith("TIMEOUT") else "API_ERROR"
    return QAVerdict(
        passed=False,
        score=0,
        confidence=0.0,
        issues=(QAIssue(type=issue_type, severity="high", description=error),),
        reasons=(QAReason(code=code, description=error),),  # type: ignore[arg-type]
        recommended_action="retry",
    )


