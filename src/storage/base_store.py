# src/storage/base_store.py — v1
"""Abstract engine store interface.

The store is the storage boundary of the engine. Every unit status
transition and every phase change is a single compare-and-set keyed on
the expected prior value; no caller holds a lock across awaits.

Contract shared by all backends:
  - ``update_unit_status`` raises ``TerminalUnitError`` for a
    locked-approved unit and ``StatusConflictError`` when the stored
    status is not one of ``expected_prior``.
  - ``attempt_count`` never decreases through ``update_unit_status``;
    only ``reset_unit`` (explicit restart) rewinds a unit.
  - ``reserve_attempt`` returns True exactly once per
    (unit, cycle, attempt_index). Given a ``run_ceiling`` it raises
    ``RunCeilingError`` when written plus reserved attempts of the run
    already reach it; check and claim happen in one step.
  - ``persist_attempt`` raises ``AttemptConflictError`` when the slot
    already holds a record.
  - Any failure to read or write raises ``StorageError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

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
)

# Fields of OutputUnit that update_unit_status may touch besides status.
UNIT_MUTABLE_FIELDS = frozenset({
    "attempt_count",
    "locked_approved",
    "needs_human",
    "asset_ref",
    "anchor_ref",
    "last_qa_report",
    "blocked_reason",
})

# Fields of PipelineRun that update_phase/update_run may touch.
RUN_MUTABLE_FIELDS = frozenset({
    "step_index",
    "is_enabled",
    "status",
    "total_retries",
    "step_retries",
    "last_error",
})


def normalize_expected(expected: UnitStatus | Iterable[UnitStatus]) -> frozenset[UnitStatus]:
    """Accept a single status or a collection of acceptable prior statuses."""
    if isinstance(expected, UnitStatus):
        return frozenset({expected})
    return frozenset(expected)


def check_fields(fields: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Fields not updatable: {sorted(unknown)}")


class BaseEngineStore(ABC):
    """Unified interface for engine storage backends."""

    # --- Runs ---

    @abstractmethod
    async def create_run(self, run: PipelineRun) -> PipelineRun:
        """Insert a new run. Raises StorageError if the id exists."""

    @abstractmethod
    async def get_run(self, run_id: str) -> PipelineRun:
        """Fetch a run. Raises RecordNotFoundError."""

    @abstractmethod
    async def update_phase(
        self,
        run_id: str,
        expected_phase: Phase,
        new_phase: Phase,
        **fields: Any,
    ) -> PipelineRun:
        """Compare-and-set the run phase (plus optional run fields)."""

    @abstractmethod
    async def update_run(self, run_id: str, **fields: Any) -> PipelineRun:
        """Atomically set run fields that carry no transition semantics."""

    @abstractmethod
    async def increment_run_counters(
        self, run_id: str, total: int = 0, step: int = 0,
    ) -> PipelineRun:
        """Atomically add to total_retries / step_retries."""

    # --- Units ---

    @abstractmethod
    async def create_unit(self, unit: OutputUnit) -> OutputUnit:
        """Insert a new unit. Raises StorageError if the id exists."""

    @abstractmethod
    async def get_unit(self, unit_id: str) -> OutputUnit:
        """Fetch a unit. Raises RecordNotFoundError."""

    @abstractmethod
    async def list_units(
        self, run_id: str, step_index: int | None = None,
    ) -> list[OutputUnit]:
        """List units of a run, optionally filtered by step, ordered by (space_id, slot)."""

    @abstractmethod
    async def update_unit_status(
        self,
        unit_id: str,
        expected_prior: UnitStatus | Iterable[UnitStatus],
        new_status: UnitStatus,
        **fields: Any,
    ) -> OutputUnit:
        """Compare-and-set the unit status (plus optional unit fields)."""

    @abstractmethod
    async def reset_unit(self, unit_id: str, **fields: Any) -> OutputUnit:
        """Rewind a unit for an explicit restart: status pending, counters and lock cleared, cycle+1."""

    # --- Attempts ---

    @abstractmethod
    async def reserve_attempt(
        self,
        unit_id: str,
        cycle: int,
        attempt_index: int,
        run_id: str | None = None,
        run_ceiling: int | None = None,
    ) -> bool:
        """Claim an attempt slot. True only for the first caller.

        Raises:
            RunCeilingError: ``run_ceiling`` is set and the run has no room left.
        """

    @abstractmethod
    async def release_attempt(self, unit_id: str, cycle: int, attempt_index: int) -> None:
        """Drop a reservation that never produced a record."""

    @abstractmethod
    async def persist_attempt(self, record: AttemptRecord) -> None:
        """Append an attempt record. Raises AttemptConflictError if written."""

    @abstractmethod
    async def list_attempts(self, unit_id: str, cycle: int | None = None) -> list[AttemptRecord]:
        """Attempts of a unit ordered by (cycle, attempt_index)."""

    @abstractmethod
    async def count_run_attempts(self, run_id: str) -> int:
        """Total attempt records written for a run (all cycles)."""

    # --- Calibration ---

    @abstractmethod
    async def record_feedback(self, event: FeedbackEvent) -> None:
        """Append a human feedback event."""

    @abstractmethod
    async def list_feedback(
        self,
        scope: str,
        step_index: int,
        category: str | None = None,
        limit: int = 50,
    ) -> list[FeedbackEvent]:
        """Recent feedback events, newest first."""

    @abstractmethod
    async def increment_counter(
        self, scope: str, step_index: int, category: str, outcome: FeedbackOutcome,
    ) -> CalibrationCounters:
        """Upsert the counters row and add one to the outcome's column."""

    @abstractmethod
    async def get_counters(
        self, scope: str, step_index: int, category: str,
    ) -> CalibrationCounters:
        """Counters for a key (zeroes when absent)."""

    @abstractmethod
    async def list_rules(
        self,
        scope: str,
        step_index: int,
        category: str | None = None,
        status: str | None = None,
    ) -> list[PolicyRule]:
        """Policy rules for a scope/step, optionally filtered."""

    @abstractmethod
    async def save_rule(self, rule: PolicyRule) -> None:
        """Insert or replace a policy rule by rule_id."""

    # --- Supervisor ---

    @abstractmethod
    async def append_decision(self, decision: SupervisorDecision) -> None:
        """Append a supervisor decision."""

    @abstractmethod
    async def list_decisions(
        self, run_id: str, step_index: int | None = None,
    ) -> list[SupervisorDecision]:
        """Decisions of a run in insertion order."""

    async def close(self) -> None:
        """Release backend resources."""
