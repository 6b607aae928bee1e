# src/core/models.py — v2
"""Shared Pydantic domain models used across modules.

No module redefines these types; all imports come from core.models.
Records that are written once (verdicts, attempts, supervisor decisions)
are frozen models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === PIPELINE PHASES ===


class Phase(str, Enum):
    """Every phase a pipeline run can be in. Mapped to steps in pipeline/phases.py."""

    UPLOAD = "upload"
    SPACE_ANALYSIS_PENDING = "space_analysis_pending"
    SPACE_ANALYSIS_RUNNING = "space_analysis_running"
    SPACE_ANALYSIS_COMPLETE = "space_analysis_complete"
    FAILED = "failed"
    TOP_DOWN_3D_PENDING = "top_down_3d_pending"
    TOP_DOWN_3D_RUNNING = "top_down_3d_running"
    TOP_DOWN_3D_REVIEW = "top_down_3d_review"
    STYLE_PENDING = "style_pending"
    STYLE_RUNNING = "style_running"
    STYLE_REVIEW = "style_review"
    DETECT_SPACES_PENDING = "detect_spaces_pending"
    DETECTING_SPACES = "detecting_spaces"
    SPACES_DETECTED = "spaces_detected"
    CAMERA_INTENT_PENDING = "camera_intent_pending"
    CAMERA_INTENT_CONFIRMED = "camera_intent_confirmed"
    PROMPT_TEMPLATES_PENDING = "prompt_templates_pending"
    PROMPT_TEMPLATES_CONFIRMED = "prompt_templates_confirmed"
    OUTPUTS_PENDING = "outputs_pending"
    OUTPUTS_IN_PROGRESS = "outputs_in_progress"
    OUTPUTS_REVIEW = "outputs_review"
    PANORAMAS_PENDING = "panoramas_pending"
    PANORAMAS_IN_PROGRESS = "panoramas_in_progress"
    PANORAMAS_REVIEW = "panoramas_review"
    MERGING_PENDING = "merging_pending"
    MERGING_IN_PROGRESS = "merging_in_progress"
    MERGING_REVIEW = "merging_review"
    COMPLETED = "completed"


class UnitStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    NEEDS_REVIEW = "needs_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    BLOCKED = "blocked"
    FAILED = "failed"


# Statuses a batch may (re)dispatch; locked and excluded units never qualify.
DISPATCHABLE_STATUSES: frozenset[UnitStatus] = frozenset({
    UnitStatus.PENDING,
    UnitStatus.QUEUED,
    UnitStatus.REJECTED,
    UnitStatus.FAILED,
})

# Statuses that stop automatic processing and wait for a human.
REVIEW_STATUSES: frozenset[UnitStatus] = frozenset({
    UnitStatus.NEEDS_REVIEW,
    UnitStatus.BLOCKED,
})


# === QA VERDICT ===

ReasonCode = Literal[
    "INVALID_INPUT",
    "MISSING_SPACE",
    "DUPLICATED_OBJECTS",
    "GEOMETRY_DISTORTION",
    "WRONG_ROOM_TYPE",
    "LOW_CONFIDENCE",
    "AMBIGUOUS_CLASSIFICATION",
    "SCALE_MISMATCH",
    "FURNITURE_MISMATCH",
    "STYLE_INCONSISTENCY",
    "WALL_RECTIFICATION",
    "MISSING_FURNISHINGS",
    "RESOLUTION_MISMATCH",
    "SEAM_ARTIFACTS",
    "COLOR_INCONSISTENCY",
    "PERSPECTIVE_ERROR",
    "SCHEMA_INVALID",
    "API_ERROR",
    "TIMEOUT",
    "UNKNOWN",
]

Severity = Literal["low", "medium", "high", "critical"]
RecommendedAction = Literal["approve", "retry", "needs_human"]


class QAReason(BaseModel):
    """Machine-readable failure reason attached to a verdict."""

    model_config = ConfigDict(frozen=True)

    code: ReasonCode
    description: str = ""


class QAIssue(BaseModel):
    """Single problem the judge observed in a candidate asset."""

    model_config = ConfigDict(frozen=True)

    type: str
    severity: Severity = "medium"
    description: str = ""
    location: str | None = None


class QAVerdict(BaseModel):
    """Structured judgment for one attempt. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    score: int = Field(ge=0, le=100)
    confidence: float = Field(ge=0.0, le=1.0)
    room_type_violation: bool = False
    structural_violation: bool = False
    critical_violation: bool = False
    validation_incomplete: bool = False
    detected_category: str | None = None
    issues: tuple[QAIssue, ...] = ()
    reasons: tuple[QAReason, ...] = ()
    corrected_instructions: str = ""
    recommended_action: RecommendedAction = "retry"
    model_used: str | None = None
    parse_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def reason_codes(self) -> list[str]:
        return [r.code for r in self.reasons]


# === RUNS, UNITS, ATTEMPTS ===


class PipelineRun(BaseModel):
    """One execution of the multi-step workflow for one input."""

    run_id: str
    scope: str = "global"
    phase: Phase = Phase.UPLOAD
    step_index: int = 0
    is_enabled: bool = True
    status: Literal["active", "blocked", "completed"] = "active"
    total_retries: int = 0
    step_retries: int = 0
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class OutputUnit(BaseModel):
    """One generatable artifact within a step."""

    unit_id: str
    run_id: str
    step_index: int
    space_id: str
    slot: str = "A"
    category: str = "other"
    prompt: str = ""
    primary_ref: str | None = None
    reference_refs: list[str] = Field(default_factory=list)
    requires_reference_comparison: bool = False
    status: UnitStatus = UnitStatus.PENDING
    cycle: int = 0
    attempt_count: int = 0
    max_attempts: int = 5
    locked_approved: bool = False
    excluded: bool = False
    needs_human: bool = False
    asset_ref: str | None = None
    anchor_ref: str | None = None
    last_qa_report: QAVerdict | None = None
    blocked_reason: dict[str, Any] | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        """Terminal for step advancement: locked-approved or excluded."""
        return self.locked_approved or self.excluded

    @property
    def group_key(self) -> tuple[str, str]:
        return (self.run_id, self.space_id)


class AttemptRecord(BaseModel):
    """One row per (unit, attempt index). Immutable once written."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    run_id: str
    cycle: int = 0
    attempt_index: int = Field(ge=1)
    prompt: str
    correction_guidance: str | None = None
    anchor_ref: str | None = None
    asset_ref: str | None = None
    verdict: QAVerdict | None = None
    action: Literal["approve", "retry", "block_for_human", "generation_failed"]
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


# === CALIBRATION ===

FeedbackOutcome = Literal["false_reject", "false_approve", "confirmed_correct"]
FeedbackCategory = Literal[
    "furniture_scale",
    "extra_furniture",
    "structural_change",
    "flooring_mismatch",
    "wrong_room_type",
    "style_mismatch",
    "artifacts",
    "other",
]


class FeedbackEvent(BaseModel):
    """A recorded human decision on a unit, with the QA decision it confirms or overrides."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    run_id: str
    scope: str
    step_index: int
    category: str
    user_decision: Literal["approved", "rejected"]
    qa_decision: Literal["approved", "rejected"]
    qa_score: int | None = None
    user_score: int | None = Field(default=None, ge=0, le=100)
    reason_category: FeedbackCategory = "other"
    reason_text: str = ""
    outcome: FeedbackOutcome
    created_at: datetime = Field(default_factory=utcnow)


class CalibrationCounters(BaseModel):
    """Per (scope, step, category) agreement counters between QA and humans."""

    scope: str
    step_index: int
    category: str
    false_accept: int = 0
    false_reject: int = 0
    confirmed_correct: int = 0

    @property
    def total(self) -> int:
        return self.false_accept + self.false_reject + self.confirmed_correct


class PolicyRule(BaseModel):
    """Rule promoted from repeated human corrections."""

    rule_id: str
    scope: str
    step_index: int
    category: str
    reason_category: FeedbackCategory = "other"
    rule_text: str
    support_count: int = 1
    status: Literal["pending", "active", "disabled"] = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# === SUPERVISOR ===

ServiceType = Literal["image_io", "info_worker", "comparison", "supervisor"]


class WorkerOutput(BaseModel):
    """Structured output one worker produced for a step."""

    worker_type: str
    data: dict[str, Any] = Field(default_factory=dict)


class WorkerJob(BaseModel):
    """Summary of a completed worker-type job submitted to the supervisor gate.

    ``outputs`` are newest first.
    """

    job_id: str
    run_id: str
    step_index: int
    service: str
    status: str = "completed"
    result: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    processing_time_ms: int = 0
    attempts: int = 1
    outputs: list[WorkerOutput] = Field(default_factory=list)


class SchemaCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    errors: tuple[str, ...] = ()


class RuleCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule: str
    passed: bool
    severity: Literal["info", "warning", "blocked"] = "info"
    message: str = ""


class AuditResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    consistency_score: float = Field(ge=0.0, le=1.0)
    contradiction_flags: tuple[str, ...] = ()
    risk_notes: str = ""
    reasoning_quality: Literal["excellent", "good", "acceptable", "poor"] = "acceptable"
    audit_failed: bool = False


class SupervisorDecision(BaseModel):
    """One per supervised job execution. Append-only."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    step_index: int
    job_id: str
    service: str
    schema_checks: tuple[SchemaCheck, ...] = ()
    rule_checks: tuple[RuleCheck, ...] = ()
    audit: AuditResult | None = None
    decision: Literal["proceed", "retry", "block"]
    reason: str = ""
    retry_budget_remaining: int = 0
    created_at: datetime = Field(default_factory=utcnow)
