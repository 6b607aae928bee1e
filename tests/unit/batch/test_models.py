# tests/unit/batch/test_models.py — v1
"""Tests for batch/models.py."""

from __future__ import annotations

from qagate.batch.models import BatchResult
from qagate.core.models import UnitStatus
from qagate.engine.outcome import UnitOutcome


def test_add_buckets_outcomes():
    result = BatchResult(run_id="r", step_index=6)
    for status in (UnitStatus.APPROVED, UnitStatus.NEEDS_REVIEW, UnitStatus.BLOCKED, UnitStatus.REJECTED):
        result.add(UnitOutcome(unit_id=status.value, status=status))
    result.add(UnitOutcome(unit_id="x", status=UnitStatus.APPROVED, skipped=True))

    assert (result.approved, result.needs_review, result.blocked, result.rejected, result.skipped) == (1, 1, 1, 1, 1)
    assert len(result.outcomes) == 5
