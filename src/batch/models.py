# src/batch/models.py — v2
"""Batch dispatch result model."""

from __future__ import annotations

from pydantic import BaseModel, Field

from qagate.core.models import UnitStatus
from qagate.engine.outcome import UnitOutcome


class BatchResult(BaseModel):
    """Summary of one batch dispatch over a step's groups."""

    run_id: str
    step_index: int
    groups: int = 0
    approved: int = 0
    needs_review: int = 0
    blocked: int = 0
    rejected: int = 0
    skipped: int = 0
    paused: bool = False
    outcomes: list[UnitOutcome] = Field(default_factory=list)
    duration_seconds: float = 0.0

    def add(self, outcome: UnitOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.skipped:
            self.skipped += 1
        elif outcome.status == UnitStatus.APPROVED:
            self.approved += 1
        elif outcome.status == UnitStatus.NEEDS_REVIEW:
            self.needs_review += 1
        elif outcome.status == UnitStatus.BLOCKED:
            self.blocked += 1
        else:
            self.rejected += 1
