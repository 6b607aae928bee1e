# tests/unit/core/test_models.py — v1
"""Tests for core/models.py — shared domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from qagate.core.models import (
    DISPATCHABLE_STATUSES,
    REVIEW_STATUSES,
    AttemptRecord,
    CalibrationCounters,
    OutputUnit,
    PipelineRun,
    QAReason,
    QAVerdict,
    UnitStatus,
)


class TestQAVerdict:
    def test_frozen(self):
        v = QAVerdict(passed=True, score=80, confidence=0.9)
        with pytest.raises(ValidationError):
            v.score = 10  # type: ignore[misc]

    def test_score_bounds(self):
        with pytest.raises(ValidationError):
            QAVerdict(passed=True, score=101, confidence=0.5)
        with pytest.raises(ValidationError):
            QAVerdict(passed=True, score=50, confidence=1.5)

    def test_reason_codes(self):
        v = QAVerdict(
            passed=False, score=20, confidence=0.5,
            reasons=(QAReason(code="WRONG_ROOM_TYPE"), QAReason(code="SCALE_MISMATCH")),
        )
        assert v.reason_codes == ["WRONG_ROOM_TYPE", "SCALE_MISMATCH"]

    def test_unknown_reason_code_rejected(self):
        with pytest.raises(ValidationError):
            QAReason(code="NOT_A_CODE")  # type: ignore[arg-type]


class TestOutputUnit:
    def test_defaults(self):
        u = OutputUnit(unit_id="u1", run_id="r1", step_index=6, space_id="space_kitchen")
        assert u.status == UnitStatus.PENDING
        assert u.slot == "A"
        assert u.max_attempts == 5
        assert u.cycle == 0
        assert not u.is_terminal

    def test_terminal_when_locked_or_excluded(self):
        base = dict(unit_id="u1", run_id="r1", step_index=6, space_id="s")
        assert OutputUnit(**base, locked_approved=True).is_terminal
        assert OutputUnit(**base, excluded=True).is_terminal
        assert not OutputUnit(**base, status=UnitStatus.APPROVED).is_terminal

    def test_group_key(self):
        u = OutputUnit(unit_id="u1", run_id="r1", step_index=6, space_id="space_bath")
        assert u.group_key == ("r1", "space_bath")


class TestStatusSets:
    def test_dispatchable_excludes_running_and_review(self):
        assert UnitStatus.RUNNING not in DISPATCHABLE_STATUSES
        assert not DISPATCHABLE_STATUSES & REVIEW_STATUSES

    def test_review_statuses(self):
        assert REVIEW_STATUSES == {UnitStatus.NEEDS_REVIEW, UnitStatus.BLOCKED}


class TestRecords:
    def test_attempt_index_is_one_based(self):
        with pytest.raises(ValidationError):
            AttemptRecord(unit_id="u", run_id="r", attempt_index=0, prompt="p", action="retry")

    def test_attempt_action_literal(self):
        with pytest.raises(ValidationError):
            AttemptRecord(unit_id="u", run_id="r", attempt_index=1, prompt="p", action="skip")  # type: ignore[arg-type]

    def test_counters_total(self):
        c = CalibrationCounters(scope="g", step_index=6, category="kitchen",
                                false_accept=1, false_reject=2, confirmed_correct=3)
        assert c.total == 6

    def test_run_defaults(self):
        run = PipelineRun(run_id="r1")
        assert run.step_index == 0
        assert run.is_enabled
        assert run.status == "active"
        assert run.total_retries == run.step_retries == 0
