# src/storage/sqlite_store.py — v1
"""SQLite-based engine store (STORE_BACKEND=sqlite).

Uses stdlib sqlite3, no external dependency. Records are stored as
pydantic JSON in a ``data`` column next to the indexed columns the
compare-and-set statements filter on. Each unit and run row carries a
``version`` that every write bumps, so a conditional UPDATE that matches
zero rows means another writer got there first.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path
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

_SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    run_id TEXT PRIMARY KEY,
    phase TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS units (
    unit_id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    step_index INTEGER NOT NULL,
    space_id TEXT NOT NULL,
    slot TEXT NOT NULL,
    status TEXT NOT NULL,
    locked INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 0,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_units_run_step ON units(run_id, step_index);
CREATE TABLE IF NOT EXISTS attempt_slots (
    unit_id TEXT NOT NULL,
    cycle INTEGER NOT NULL,
    attempt_index INTEGER NOT NULL,
    run_id TEXT,
    reserved_at TEXT DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (unit_id, cycle, attempt_index)
);
CREATE INDEX IF NOT EXISTS idx_attempt_slots_run ON attempt_slots(run_id);
CREATE TABLE IF NOT EXISTS attempts (
    unit_id TEXT NOT NULL,
    cycle INTEGER NOT NULL,
    attempt_index INTEGER NOT NULL,
    run_id TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (unit_id, cycle, attempt_index)
);
CREATE INDEX IF NOT EXISTS idx_attempts_run ON attempts(run_id);
CREATE TABLE IF NOT EXISTS feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scope TEXT NOT NULL,
    step_index INTEGER NOT NULL,
    category TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_feedback_key ON feedback(scope, step_index, category);
CREATE TABLE IF NOT EXISTS calibration_counters (
    scope TEXT NOT NULL,
    step_index INTEGER NOT NULL,
    category TEXT NOT NULL,
    false_accept INTEGER NOT NULL DEFAULT 0,
    false_reject INTEGER NOT NULL DEFAULT 0,
    confirmed_correct INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (scope, step_index, category)
);
CREATE TABLE IF NOT EXISTS policy_rules (
    rule_id TEXT PRIMARY KEY,
    scope TEXT NOT NULL,
    step_index INTEGER NOT NULL,
    category TEXT NOT NULL,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS supervisor_decisions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL,
    step_index INTEGER NOT NULL,
    data TEXT NOT NULL
);
"""

_COUNTER_COLUMN: dict[str, str] = {
    "false_approve": "false_accept",
    "false_reject": "false_reject",
    "confirmed_correct": "confirmed_correct",
}


class SqliteEngineStore(BaseEngineStore):
    """SQLite-backed store with conditional-UPDATE compare-and-set."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser() if str(db_path) != ":memory:" else None
        if self._db_path is not None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(self._db_path or ":memory:"))
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open engine store at {db_path}: {e}") from e

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        try:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor
        except sqlite3.IntegrityError:
            self._conn.rollback()
            raise
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StorageError(f"SQLite error: {e}") from e

    # --- Runs ---

    async def create_run(self, run: PipelineRun) -> PipelineRun:
        try:
            self._execute(
                "INSERT INTO runs (run_id, phase, data) VALUES (?, ?, ?)",
                (run.run_id, run.phase.value, run.model_dump_json()),
            )
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Run {run.run_id} already exists") from e
        return run

    def _read_run(self, run_id: str) -> tuple[PipelineRun, int]:
        row = self._execute(
            "SELECT data, version FROM runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Run {run_id} not found")
        return PipelineRun(**json.loads(row[0])), row[1]

    async def get_run(self, run_id: str) -> PipelineRun:
        return self._read_run(run_id)[0]

    def _write_run(self, current: PipelineRun, version: int, update: dict[str, Any]) -> PipelineRun:
        updated = current.model_copy(update={**update, "updated_at": utcnow()})
        cursor = self._execute(
            "UPDATE runs SET phase = ?, data = ?, version = version + 1 "
            "WHERE run_id = ? AND phase = ? AND version = ?",
            (updated.phase.value, updated.model_dump_json(),
             current.run_id, current.phase.value, version),
        )
        if cursor.rowcount != 1:
            latest, _ = self._read_run(current.run_id)
            raise StatusConflictError(f"run:{current.run_id}", current.phase, latest.phase)
        return updated

    async def update_phase(
        self,
        run_id: str,
        expected_phase: Phase,
        new_phase: Phase,
        **fields: Any,
    ) -> PipelineRun:
        check_fields(fields, RUN_MUTABLE_FIELDS)
        current, version = self._read_run(run_id)
        if current.phase != expected_phase:
            raise StatusConflictError(f"run:{run_id}", expected_phase, current.phase)
        return self._write_run(current, version, {**fields, "phase": new_phase})

    async def update_run(self, run_id: str, **fields: Any) -> PipelineRun:
        check_fields(fields, RUN_MUTABLE_FIELDS)
        current, version = self._read_run(run_id)
        return self._write_run(current, version, fields)

    async def increment_run_counters(
        self, run_id: str, total: int = 0, step: int = 0,
    ) -> PipelineRun:
        current, version = self._read_run(run_id)
        return self._write_run(current, version, {
            "total_retries": current.total_retries + total,
            "step_retries": current.step_retries + step,
        })

    # --- Units ---

    async def create_unit(self, unit: OutputUnit) -> OutputUnit:
        try:
            self._execute(
                "INSERT INTO units (unit_id, run_id, step_index, space_id, slot, status, locked, data) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (unit.unit_id, unit.run_id, unit.step_index, unit.space_id, unit.slot,
                 unit.status.value, int(unit.locked_approved), unit.model_dump_json()),
            )
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Unit {unit.unit_id} already exists") from e
        return unit

    def _read_unit(self, unit_id: str) -> tuple[OutputUnit, int]:
        row = self._execute(
            "SELECT data, version FROM units WHERE unit_id = ?", (unit_id,)
        ).fetchone()
        if row is None:
            raise RecordNotFoundError(f"Unit {unit_id} not found")
        return OutputUnit(**json.loads(row[0])), row[1]

    async def get_unit(self, unit_id: str) -> OutputUnit:
        return self._read_unit(unit_id)[0]

    async def list_units(
        self, run_id: str, step_index: int | None = None,
    ) -> list[OutputUnit]:
        if step_index is None:
            cursor = self._execute(
                "SELECT data FROM units WHERE run_id = ? ORDER BY step_index, space_id, slot",
                (run_id,),
            )
        else:
            cursor = self._execute(
                "SELECT data FROM units WHERE run_id = ? AND step_index = ? "
                "ORDER BY space_id, slot",
                (run_id, step_index),
            )
        return [OutputUnit(**json.loads(row[0])) for row in cursor.fetchall()]

    def _write_unit(
        self,
        current: OutputUnit,
        version: int,
        update: dict[str, Any],
        require_unlocked: bool,
    ) -> OutputUnit:
        updated = current.model_copy(update={**update, "updated_at": utcnow()})
        sql = (
            "UPDATE units SET status = ?, locked = ?, data = ?, version = version + 1 "
            "WHERE unit_id = ? AND status = ? AND version = ?"
        )
        if require_unlocked:
            sql += " AND locked = 0"
        cursor = self._execute(
            sql,
            (updated.status.value, int(updated.locked_approved), updated.model_dump_json(),
             current.unit_id, current.status.value, version),
        )
        if cursor.rowcount != 1:
            latest, _ = self._read_unit(current.unit_id)
            if latest.locked_approved:
                raise TerminalUnitError(current.unit_id)
            raise StatusConflictError(f"unit:{current.unit_id}", current.status, latest.status)
        return updated

    async def update_unit_status(
        self,
        unit_id: str,
        expected_prior: UnitStatus | Iterable[UnitStatus],
        new_status: UnitStatus,
        **fields: Any,
    ) -> OutputUnit:
        check_fields(fields, UNIT_MUTABLE_FIELDS)
        expected = normalize_expected(expected_prior)
        current, version = self._read_unit(unit_id)
        if current.locked_approved:
            raise TerminalUnitError(unit_id)
        if current.status not in expected:
            raise StatusConflictError(
                f"unit:{unit_id}", sorted(s.value for s in expected), current.status,
            )
        if fields.get("attempt_count", current.attempt_count) < current.attempt_count:
            raise ValueError(f"attempt_count of {unit_id} cannot decrease")
        return self._write_unit(
            current, version, {**fields, "status": new_status}, require_unlocked=True,
        )

    async def reset_unit(self, unit_id: str, **fields: Any) -> OutputUnit:
        current, version = self._read_unit(unit_id)
        return self._write_unit(
            current,
            version,
            {
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
            },
            require_unlocked=False,
        )

    # --- Attempts ---

    async def reserve_attempt(
        self,
        unit_id: str,
        cycle: int,
        attempt_index: int,
        run_id: str | None = None,
        run_ceiling: int | None = None,
    ) -> bool:
        slot = (unit_id, cycle, attempt_index)
        written = self._execute(
            "SELECT 1 FROM attempts WHERE unit_id = ? AND cycle = ? AND attempt_index = ?", slot,
        ).fetchone()
        if written is not None:
            return False
        if run_id is None or run_ceiling is None:
            cursor = self._execute(
                "INSERT OR IGNORE INTO attempt_slots (unit_id, cycle, attempt_index, run_id) "
                "VALUES (?, ?, ?, ?)",
                (*slot, run_id),
            )
            return cursor.rowcount == 1

        # Written plus reserved attempts of the run are counted in the insert itself.
        cursor = self._execute(
            "INSERT OR IGNORE INTO attempt_slots (unit_id, cycle, attempt_index, run_id) "
            "SELECT ?, ?, ?, ? WHERE "
            "(SELECT COUNT(*) FROM attempts WHERE run_id = ?) "
            "+ (SELECT COUNT(*) FROM attempt_slots WHERE run_id = ?) < ?",
            (*slot, run_id, run_id, run_id, run_ceiling),
        )
        if cursor.rowcount == 1:
            return True
        taken = self._execute(
            "SELECT 1 FROM attempt_slots WHERE unit_id = ? AND cycle = ? AND attempt_index = ?", slot,
        ).fetchone()
        if taken is not None:
            return False
        raise RunCeilingError(run_id, run_ceiling)

    async def release_attempt(self, unit_id: str, cycle: int, attempt_index: int) -> None:
        self._execute(
            "DELETE FROM attempt_slots WHERE unit_id = ? AND cycle = ? AND attempt_index = ?",
            (unit_id, cycle, attempt_index),
        )

    async def persist_attempt(self, record: AttemptRecord) -> None:
        try:
            self._execute(
                "INSERT INTO attempts (unit_id, cycle, attempt_index, run_id, data) "
                "VALUES (?, ?, ?, ?, ?)",
                (record.unit_id, record.cycle, record.attempt_index, record.run_id,
                 record.model_dump_json()),
            )
        except sqlite3.IntegrityError as e:
            raise AttemptConflictError(record.unit_id, record.attempt_index) from e
        await self.release_attempt(record.unit_id, record.cycle, record.attempt_index)

    async def list_attempts(self, unit_id: str, cycle: int | None = None) -> list[AttemptRecord]:
        if cycle is None:
            cursor = self._execute(
                "SELECT data FROM attempts WHERE unit_id = ? ORDER BY cycle, attempt_index",
                (unit_id,),
            )
        else:
            cursor = self._execute(
                "SELECT data FROM attempts WHERE unit_id = ? AND cycle = ? ORDER BY attempt_index",
                (unit_id, cycle),
            )
        return [AttemptRecord(**json.loads(row[0])) for row in cursor.fetchall()]

    async def count_run_attempts(self, run_id: str) -> int:
        row = self._execute(
            "SELECT COUNT(*) FROM attempts WHERE run_id = ?", (run_id,)
        ).fetchone()
        return int(row[0])

    # --- Calibration ---

    async def record_feedback(self, event: FeedbackEvent) -> None:
        self._execute(
            "INSERT INTO feedback (scope, step_index, category, data) VALUES (?, ?, ?, ?)",
            (event.scope, event.step_index, event.category, event.model_dump_json()),
        )

    async def list_feedback(
        self,
        scope: str,
        step_index: int,
        category: str | None = None,
        limit: int = 50,
    ) -> list[FeedbackEvent]:
        if category is None:
            cursor = self._execute(
                "SELECT data FROM feedback WHERE scope = ? AND step_index = ? "
                "ORDER BY id DESC LIMIT ?",
                (scope, step_index, limit),
            )
        else:
            cursor = self._execute(
                "SELECT data FROM feedback WHERE scope = ? AND step_index = ? AND category = ? "
                "ORDER BY id DESC LIMIT ?",
                (scope, step_index, category, limit),
            )
        return [FeedbackEvent(**json.loads(row[0])) for row in cursor.fetchall()]

    async def increment_counter(
        self, scope: str, step_index: int, category: str, outcome: FeedbackOutcome,
    ) -> CalibrationCounters:
        column = _COUNTER_COLUMN[outcome]
        self._execute(
            "INSERT INTO calibration_counters (scope, step_index, category) VALUES (?, ?, ?) "
            "ON CONFLICT(scope, step_index, category) DO NOTHING",
            (scope, step_index, category),
        )
        self._execute(
            f"UPDATE calibration_counters SET {column} = {column} + 1 "  # noqa: S608
            "WHERE scope = ? AND step_index = ? AND category = ?",
            (scope, step_index, category),
        )
        return await self.get_counters(scope, step_index, category)

    async def get_counters(
        self, scope: str, step_index: int, category: str,
    ) -> CalibrationCounters:
        row = self._execute(
            "SELECT false_accept, false_reject, confirmed_correct FROM calibration_counters "
            "WHERE scope = ? AND step_index = ? AND category = ?",
            (scope, step_index, category),
        ).fetchone()
        if row is None:
            return CalibrationCounters(scope=scope, step_index=step_index, category=category)
        return CalibrationCounters(
            scope=scope,
            step_index=step_index,
            category=category,
            false_accept=row[0],
            false_reject=row[1],
            confirmed_correct=row[2],
        )

    async def list_rules(
        self,
        scope: str,
        step_index: int,
        category: str | None = None,
        status: str | None = None,
    ) -> list[PolicyRule]:
        sql = "SELECT data FROM policy_rules WHERE scope = ? AND step_index = ?"
        params: list[Any] = [scope, step_index]
        if category is not None:
            sql += " AND category = ?"
            params.append(category)
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        cursor = self._execute(sql, tuple(params))
        return [PolicyRule(**json.loads(row[0])) for row in cursor.fetchall()]

    async def save_rule(self, rule: PolicyRule) -> None:
        self._execute(
            "INSERT OR REPLACE INTO policy_rules (rule_id, scope, step_index, category, status, data) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (rule.rule_id, rule.scope, rule.step_index, rule.category, rule.status,
             rule.model_dump_json()),
        )

    # --- Supervisor ---

    async def append_decision(self, decision: SupervisorDecision) -> None:
        self._execute(
            "INSERT INTO supervisor_decisions (run_id, step_index, data) VALUES (?, ?, ?)",
            (decision.run_id, decision.step_index, decision.model_dump_json()),
        )

    async def list_decisions(
        self, run_id: str, step_index: int | None = None,
    ) -> list[SupervisorDecision]:
        if step_index is None:
            cursor = self._execute(
                "SELECT data FROM supervisor_decisions WHERE run_id = ? ORDER BY id", (run_id,),
            )
        else:
            cursor = self._execute(
                "SELECT data FROM supervisor_decisions WHERE run_id = ? AND step_index = ? "
                "ORDER BY id",
                (run_id, step_index),
            )
        return [SupervisorDecision(**json.loads(row[0])) for row in cursor.fetchall()]

    async def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
