# src/api/models.py — v2
"""API-level models: UnitSpec, StepReport, UnitStatusView."""

from __future__ import annotations

from pydantic import BaseModel, Field

from qagate.batch.models import BatchResult
from qagate.core.models import AttemptRecord, OutputUnit, PipelineRun


class UnitSpec(BaseModel):
    """Registration input for one output unit."""

    space_id: str
    slot: str = "A"
    unit_id: str | None = None
    category: str = "other"
    prompt: str = ""
    primary_ref: str | None = None
    reference_refs: list[str] = Field(default_factory=list)
    requires_reference_comparison: bool = False
    excluded: bool = False
    max_attempts: int | None = Field(default=None, ge=1)


class StepReport(BaseModel):
    """Result of submitting a step: the batch summary and the run afterwards."""

    run: PipelineRun
    batch: BatchResult
    created_units: list[str] = Field(default_factory=list)


class UnitStatusView(BaseModel):
    """A unit with the attempt history of its current cycle."""

    unit: OutputUnit
    attempts: list[AttemptRecord] = Field(default_factory=list)

    @property
    def latest_attempt(self) -> AttemptRecord | None:
        return self.attempts[-1] if self.attempts else None
