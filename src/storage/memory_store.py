# src/storage/memory_store.py — v1
"""In-process engine store (STORE_BACKEND=memory).

Compare-and-set is a check-and-write under a single asyncio.Lock. The
lock is never held across an external await, so it only serializes the
microseconds of each transition. Records are copied on the way in and
out; callers never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from qagate.core.errors import (
    AttemptConflictError,
    RecordNotFoundError,
    StatusConflictError,
    RunCeilingError,
    StorageError,
    TerminalUnitError,
)
from qagate.core.models import (
    AttemptRecord,
    CalibrationCounters,
    FeedbackEvent,
    FeedbackOutcome,
    OutputUnit,
    Phase,
    PipelineRun,
    PolicyRule,
    SupervisorDecision,
    UnitStatus,
    utcnow,
)
from qagate.storage.base_store import (
    RUN_MUTABLE_FIELDS,
    UNIT_MUTABLE_FIELDS,
    BaseEngineStore,
    check_fields,
    normalize_expected,
)

logger = logging.getLogger(__name__)

_COUNTER_COLUMN: dict[str, str] = {
    "false_approve": "false_accept",
    "false_reject": "false_reject",
    "confirmed_correct": "confirmed_correct",
}


class MemoryEngineStore(BaseEngineStore):
    """Dictionary-backed store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._runs: dict[str, PipelineRun] = {}
        self._units: dict[str, OutputUnit] = {}
        self._reservations: dict[tuple[str, int, int], str | None] = {}
        self._attempts: dict[tuple[str, int, int], AttemptRecord] = {}
        self._feedback: list[FeedbackEvent] = []
        self._counters: dict[tuple[str, int, str], CalibrationCounters] = {}
        self._rules: dict[str, PolicyRule] = {}
        self._decisions: list[SupervisorDecision] = []

    # --- Runs ---

    async def create_run(self, run: PipelineRun) -> PipelineRun:
        async with self._lock:
            if run.run_id in self._runs:
                raise StorageError(f"Run {run.run_id} already exists")
            self._runs[run.run_id] = run.model_copy(deep=True)
            return run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> PipelineRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RecordNotFoundError(f"Run {run_id} not found")
        return run.model_copy(deep=True)

    async def update_phase(
        self,
        run_id: str,
        expected_phase: Phase,
        new_phase: Phase,
        **fields: Any,
    ) -> PipelineRun:
        check_fields(fields, RUN_MUTABLE_FIELDS)
        async with self._lock:
            current = await self.get_run(run_id)
            if current.phase != expected_phase:
                raise StatusConflictError(f"run:{run_id}", expected_phase, current.phase)
            updated = current.model_copy(
                update={**fields, "phase": new_phase, "updated_at": utcnow()}
            )
            self._runs[run_id] = updated
            return updated.model_copy(deep=True)

    async def update_run(self, run_id: str, **fields: Any) -> PipelineRun:
        check_fields(fields, RUN_MUTABLE_FIELDS)
        async with self._lock:
            current = await self.get_run(run_id)
            updated = current.model_copy(update={**fields, "updated_at": utcnow()})
            self._runs[run_id] = updated
            return updated.model_copy(deep=True)

    async def increment_run_counters(
        self, run_id: str, total: int = 0, step: int = 0,
    ) -> PipelineRun:
        async with self._lock:
            current = await self.get_run(run_id)
            updated = current.model_copy(update={
                "total_retries": current.total_retries + total,
                "step_retries": current.step_retries + step,
                "updated_at": utcnow(),
            })
            self._runs[run_id] = updated
            return updated.model_copy(deep=True)

    # --- Units ---

    async def create_unit(self, unit: OutputUnit) -> OutputUnit:
        async with self._lock:
            if unit.unit_id in self._units:
                raise StorageError(f"Unit {unit.unit_id} already exists")
            self._units[unit.unit_id] = unit.model_copy(deep=True)
            return unit.model_copy(deep=True)

    async def get_unit(self, unit_id: str) -> OutputUnit:
        unit = self._units.get(unit_id)
        if unit is None:
            raise RecordNotFoundError(f"Unit {unit_id} not found")
        return unit.model_copy(deep=True)

    async def list_units(
        self, run_id: str, step_index: int | None = None,
    ) -> list[OutputUnit]:
        units = [
            u.model_copy(deep=True)
            for u in self._units.values()
            if u.run_id == run_id and (step_index is None or u.step_index == step_index)
        ]
        return sorted(units, key=lambda u: (u.step_index, u.space_id, u.slot))

    async def update_unit_status(
        self,
        unit_id: str,
        expected_prior: UnitStatus | Iterable[UnitStatus],
        new_status: UnitStatus,
        **fields: Any,
    ) -> OutputUnit:
        check_fields(fields, UNIT_MUTABLE_FIELDS)
        expected = normalize_expected(expected_prior)
        async with self._lock:
            current = await self.get_unit(unit_id)
            if current.locked_approved:
                raise TerminalUnitError(unit_id)
            if current.status not in expected:
                raise StatusConflictError(
                    f"unit:{unit_id}", sorted(s.value for s in expected), current.status,
                )
            if fields.get("attempt_count", current.attempt_count) < current.attempt_count:
                raise ValueError(f"attempt_count of {unit_id} cannot decrease")
            updated = current.model_copy(
                update={**fields, "status": new_status, "updated_at": utcnow()}
            )
            self._units[unit_id] = updated
            return updated.model_copy(deep=True)

    async def reset_unit(self, unit_id: str, **fields: Any) -> OutputUnit:
        async with self._lock:
            current = await self.get_unit(unit_id)
            updated = current.model_copy(update={
                **fields,
                "status": UnitStatus.PENDING,
                "cycle": current.cycle + 1,
                "attempt_count": 0,
                "locked_approved": False,
                "needs_human": False,
                "asset_ref": None,
                "anchor_ref": None,
                "last_qa_report": None,
                "blocked_reason": None,
                "updated_at": utcnow(),
            })
            self._units[unit_id] = updated
            return updated.model_copy(deep=True)

    # --- Attempts ---

    async def reserve_attempt(
        self,
        unit_id: str,
        cycle: int,
        attempt_index: int,
        run_id: str | None = None,
        run_ceiling: int | None = None,
    ) -> bool:
        key = (unit_id, cycle, attempt_index)
        async with self._lock:
            if key in self._reservations or key in self._attempts:
                return False
            if run_id is not None and run_ceiling is not None:
                written = sum(1 for r in self._attempts.values() if r.run_id == run_id)
                pending = sum(1 for rid in self._reservations.values() if rid == run_id)
                if written + pending >= run_ceiling:
                    raise RunCeilingError(run_id, run_ceiling)
            self._reservations[key] = run_id
            return True

    async def release_attempt(self, unit_id: str, cycle: int, attempt_index: int) -> None:
        async with self._lock:
            self._reservations.pop((unit_id, cycle, attempt_index), None)

    async def persist_attempt(self, record: AttemptRecord) -> None:
        key = (record.unit_id, record.cycle, record.attempt_index)
        async with self._lock:
            if key in self._attempts:
                raise AttemptConflictError(record.unit_id, record.attempt_index)
            self._attempts[key] = record
            self._reservations.pop(key, None)

    async def list_attempts(self, unit_id: str, cycle: int | None = None) -> list[AttemptRecord]:
        records = [
            r for (uid, c, _), r in self._attempts.items()
            if uid == unit_id and (cycle is None or c == cycle)
        ]
        return sorted(records, key=lambda r: (r.cycle, r.attempt_index))

    async def count_run_attempts(self, run_id: str) -> int:
        return sum(1 for r in self._attempts.values() if r.run_id == run_id)

    # --- Calibration ---

    async def record_feedback(self, event: FeedbackEvent) -> None:
        async with self._lock:
            self._feedback.append(event)

    async def list_feedback(
        self,
        scope: str,
        step_index: int,
        category: str | None = None,
        limit: int = 50,
    ) -> list[FeedbackEvent]:
        matching = [
            e for e in reversed(self._feedback)
            if e.scope == scope
            and e.step_index == step_index
            and (category is None or e.category == category)
        ]
        return matching[:limit]

    async def increment_counter(
        self, scope: str, step_index: int, category: str, outcome: FeedbackOutcome,
    ) -> CalibrationCounters:
        key = (scope, step_index, category)
        column = _COUNTER_COLUMN[outcome]
        async with self._lock:
            current = self._counters.get(key) or CalibrationCounters(
                scope=scope, step_index=step_index, category=category,
            )
            updated = current.model_copy(update={column: getattr(current, column) + 1})
            self._counters[key] = updated
            return updated.model_copy()

    async def get_counters(
        self, scope: str, step_index: int, category: str,
    ) -> CalibrationCounters:
        current = self._counters.get((scope, step_index, category))
        if current is None:
            return CalibrationCounters(scope=scope, step_index=step_index, category=category)
        return current.model_copy()

    async def list_rules(
        self,
        scope: str,
        step_index: int,
        category: str | None = None,
        status: str | None = None,
    ) -> list[PolicyRule]:
        return [
            r.model_copy()
            for r in self._rules.values()
            if r.scope == scope
            and r.step_index == step_index
            and (category is None or r.category == category)
            and (status is None or r.status == status)
        ]

    async def save_rule(self, rule: PolicyRule) -> None:
        async with self._lock:
            self._rules[rule.rule_id] = rule.model_copy()

    # --- Supervisor ---

    async def append_decision(self, decision: SupervisorDecision) -> None:
        async with self._lock:
            self._decisions.append(decision)

    async def list_decisions(
        self, run_id: str, step_index: int | None = None,
    ) -> list[SupervisorDecision]:
        return [
            d for d in self._decisions
            if d.run_id == run_id and (step_index is None or d.step_index == step_index)
        ]
