# src/qa/parsing.py — v1
"""Tagged parsing of raw judgment payloads.

``parse_judgment`` returns either a ``ParsedJudgment`` or a
``JudgmentParseError``; it never raises and never fills a missing
required field with a default. Required: ``pass`` (bool) and ``score``
(finite number). NaN and infinities are rejected like missing fields.
Everything else is optional.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from qagate.core.models import QAIssue, QAReason, ReasonCode

logger = logging.getLogger(__name__)

_VALID_CODES = frozenset(get_args(ReasonCode))
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

# Free-form failure categories reported by the judgment model → reason codes.
FAILURE_CATEGORY_CODES: dict[str, str] = {
    "wrong_room": "WRONG_ROOM_TYPE",
    "room_type_violation": "WRONG_ROOM_TYPE",
    "hallucinated_opening": "GEOMETRY_DISTORTION",
    "layout_mismatch": "GEOMETRY_DISTORTION",
    "structural_change": "WALL_RECTIFICATION",
    "missing_major_furniture": "MISSING_FURNISHINGS",
    "extra_major_furniture": "FURNITURE_MISMATCH",
    "duplicate_object": "DUPLICATED_OBJECTS",
    "seam_artifact": "SEAM_ARTIFACTS",
    "perspective_error": "PERSPECTIVE_ERROR",
    "wrong_camera_direction": "PERSPECTIVE_ERROR",
    "ignored_camera": "PERSPECTIVE_ERROR",
    "lighting_mismatch": "COLOR_INCONSISTENCY",
    "style_mismatch": "STYLE_INCONSISTENCY",
    "scale_mismatch": "SCALE_MISMATCH",
    "other": "UNKNOWN",
}

_SEVERITY_ALIASES = {"major": "high", "minor": "low", "moderate": "medium"}


class RawJudgment(BaseModel):
    """Wire shape of a judgment. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, allow_inf_nan=False)

    passed: bool = Field(alias="pass")
    score: float
    confidence_score: float | None = None
    room_type_violation: bool = False
    structural_violation: bool = False
    detected_room_type: str | None = None
    reference_comparison_performed: bool | None = Field(
        default=None, alias="step3_comparison_performed",
    )
    issues: list[dict[str, Any]] = Field(default_factory=list)
    failure_categories: list[str] = Field(default_factory=list)
    reasons: list[dict[str, Any]] = Field(default_factory=list)
    rejection_explanation: str = ""
    corrected_instructions: str = ""
    recommended_action: str | None = None

    @field_validator("issues", "reasons", mode="before")
    @classmethod
    def keep_only_objects(cls, v: Any) -> Any:  # noqa: N805
        if isinstance(v, list):
            return [item for item in v if isinstance(item, dict)]
        return v

    @field_validator("corrected_instructions", "rejection_explanation", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:  # noqa: N805
        return "" if v is None else v


@dataclass(frozen=True)
class ParsedJudgment:
    """Successfully parsed judgment (values not yet clamped)."""

    passed: bool
    score: float
    confidence: float | None
    room_type_violation: bool
    structural_violation: bool
    detected_category: str | None
    reference_comparison_performed: bool | None
    issues: tuple[QAIssue, ...]
    reasons: tuple[QAReason, ...]
    corrected_instructions: str
    recommended_action: str | None


@dataclass(frozen=True)
class JudgmentParseError:
    """The payload was not valid JSON or lacked a required field."""

    message: str
    raw: str


def _strip_fences(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        lines = [ln for ln in text.split("\n") if not ln.strip().startswith("```")]
        text = "\n".join(lines).strip()
    if not text.startswith("{"):
        match = _JSON_OBJECT_RE.search(text)
        if match:
            text = match.group(0)
    return text


def _to_issue(raw: dict[str, Any]) -> QAIssue | None:
    severity = str(raw.get("severity", "medium")).lower()
    severity = _SEVERITY_ALIASES.get(severity, severity)
    try:
        return QAIssue(
            type=str(raw.get("type") or raw.get("category") or "other"),
            severity=severity,  # type: ignore[arg-type]
            description=str(raw.get("description", "")),
            location=raw.get("location_hint") or raw.get("location"),
        )
    except ValidationError as exc:
        logger.debug("Skipping malformed issue: %s", exc)
        return None


def _collect_reasons(raw: RawJudgment) -> tuple[QAReason, ...]:
    reasons: dict[str, QAReason] = {}
    for item in raw.reasons:
        code = str(item.get("code", "")).upper()
        if code in _VALID_CODES and code not in reasons:
            reasons[code] = QAReason(code=code, description=str(item.get("description", "")))  # type: ignore[arg-type]
    for category in raw.failure_categories:
        code = FAILURE_CATEGORY_CODES.get(str(category).lower(), "UNKNOWN")
        if code not in reasons:
            reasons[code] = QAReason(code=code, description=raw.rejection_explanation)  # type: ignore[arg-type]
    return tuple(reasons.values())


def parse_judgment(content: str) -> ParsedJudgment | JudgmentParseError:
    """Parse a raw judgment payload into a tagged result."""
    text = _strip_fences(content)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return JudgmentParseError(message=f"invalid JSON: {e}", raw=content)
    if not isinstance(data, dict):
        return JudgmentParseError(message="judgment is not a JSON object", raw=content)

    try:
        raw = RawJudgment.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        return JudgmentParseError(message=f"missing or invalid fields: {fields}", raw=content)

    issues = tuple(i for i in (_to_issue(d) for d in raw.issues) if i is not None)
    return ParsedJudgment(
        passed=raw.passed,
        score=raw.score,
        confidence=raw.confidence_score,
        room_type_violation=raw.room_type_violation,
        structural_violation=raw.structural_violation,
        detected_category=raw.detected_room_type,
        reference_comparison_performed=raw.reference_comparison_performed,
        issues=issues,
        reasons=_collect_reasons(raw),
        corrected_instructions=raw.corrected_instructions.strip(),
        recommended_action=raw.recommended_action,
    )
