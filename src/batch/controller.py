# src/batch/controller.py — v1
"""Batch concurrency controller — bounded fan-out over space groups.

Units are grouped by space. Groups run concurrently inside a semaphore
window of ``batch_concurrency``; inside a group the dependency enforcer
keeps A-then-B order. The run's ``is_enabled`` flag and blocked status
are read before every dispatch: once paused or blocked, groups not yet
started are skipped and calls already in flight finish normally.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from qagate.batch.models import BatchResult
from qagate.config.settings import Settings
from qagate.core.errors import StatusConflictError, TerminalUnitError
from qagate.core.models import DISPATCHABLE_STATUSES, OutputUnit, PipelineRun, UnitStatus
from qagate.dependency.enforcer import group_by_space
from qagate.engine.outcome import UnitOutcome
from qagate.logging.context import set_run_context

if TYPE_CHECKING:
    from qagate.dependency.enforcer import DependencyEnforcer
    from qagate.engine.executor import UnitExecutor
    from qagate.storage.base_store import BaseEngineStore

logger = logging.getLogger(__name__)


class BatchController:
    """Dispatch a step's units with bounded concurrency."""

    def __init__(
        self,
        store: BaseEngineStore,
        executor: UnitExecutor,
        enforcer: DependencyEnforcer,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._enforcer = enforcer
        self._settings = settings or Settings()

    async def run(self, run: PipelineRun, units: list[OutputUnit] | None = None) -> BatchResult:
        """Process every group of the run's current step (or the given units)."""
        started = time.monotonic()
        set_run_context(run.run_id, step=run.step_index)
        if units is None:
            units = await self._store.list_units(run.run_id, step_index=run.step_index)

        groups = group_by_space(units)
        result = BatchResult(run_id=run.run_id, step_index=run.step_index, groups=len(groups))
        window = asyncio.Semaphore(self._settings.batch_concurrency)

        async def run_group(group: list[OutputUnit]) -> list[UnitOutcome]:
            async with window:
                if not await self._is_enabled(run.run_id):
                    result.paused = True
                    return [
                        UnitOutcome(unit_id=u.unit_id, status=u.status, skipped=True, reason="paused")
                        for u in group
                    ]
                queued = [await self._queue(u) for u in group]
                return await self._enforcer.run_group(queued, lambda u, anchor: self._dispatch(run, u, anchor))

        logger.info(
            "Dispatching %d unit(s) in %d group(s) for run %s step %d (window %d)",
            len(units), len(groups), run.run_id, run.step_index, self._settings.batch_concurrency,
        )
        for outcomes in await asyncio.gather(*(run_group(g) for g in groups.values())):
            for outcome in outcomes:
                result.add(outcome)

        result.duration_seconds = round(time.monotonic() - started, 3)
        logger.info(
            "Batch done for run %s: approved=%d review=%d blocked=%d rejected=%d skipped=%d%s",
            run.run_id, result.approved, result.needs_review, result.blocked,
            result.rejected, result.skipped, " (paused)" if result.paused else "",
        )
        return result

    async def _dispatch(self, run: PipelineRun, unit: OutputUnit, anchor_ref: str | None) -> UnitOutcome:
        if not await self._is_enabled(run.run_id):
            return UnitOutcome(unit_id=unit.unit_id, status=unit.status, skipped=True, reason="paused")
        return await self._executor.execute(unit.unit_id, scope=run.scope, anchor_ref=anchor_ref)

    async def _queue(self, unit: OutputUnit) -> OutputUnit:
        """Move a dispatchable unit to queued; others are returned unchanged."""
        if unit.excluded or unit.locked_approved or unit.status not in DISPATCHABLE_STATUSES:
            return unit
        if unit.status == UnitStatus.QUEUED:
            return unit
        try:
            return await self._store.update_unit_status(
                unit.unit_id, DISPATCHABLE_STATUSES, UnitStatus.QUEUED,
            )
        except (StatusConflictError, TerminalUnitError) as e:
            logger.info("Not queuing %s: %s", unit.unit_id, e)
            return await self._store.get_unit(unit.unit_id)

    async def _is_enabled(self, run_id: str) -> bool:
        run = await self._store.get_run(run_id)
        return run.is_enabled and run.status != "blocked"
