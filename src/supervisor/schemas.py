# src/supervisor/schemas.py — v1
"""Deterministic schema validation of worker jobs and worker outputs.

Every check yields a ``SchemaCheck``; nothing here raises. Worker output
payloads are validated through Pydantic models so that error messages
name the offending field path.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from qagate.core.models import SchemaCheck, WorkerJob

logger = logging.getLogger(__name__)

KNOWN_SERVICES = frozenset({"image_io", "info_worker", "comparison", "supervisor"})

KNOWN_SPACE_CATEGORIES = frozenset({
    "bedroom",
    "master_bedroom",
    "bathroom",
    "kitchen",
    "living_room",
    "dining",
    "closet",
    "hallway",
    "entrance",
    "office",
    "laundry",
    "storage",
    "balcony",
    "other",
})

_MAX_ERRORS_PER_CHECK = 10


class DetectedSpace(BaseModel):
    model_config = ConfigDict(extra="allow")

    space_id: str = Field(pattern=r"^space_[a-z0-9_]+$")
    label: str = Field(min_length=1)
    category: str
    confidence: float = Field(strict=True)
    ambiguity_flags: list[str] = Field(default_factory=list)

    @field_validator("category")
    @classmethod
    def known_category(cls, v: str) -> str:  # noqa: N805
        if v not in KNOWN_SPACE_CATEGORIES:
            raise ValueError(f"unknown category '{v}'")
        return v


class InfoWorkerOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    spaces: list[DetectedSpace]
    model_used: str = Field(min_length=1)


class ComparisonOutput(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    passed: bool = Field(alias="pass", strict=True)
    recommended_next_step: str = Field(min_length=1)
    failures: list[Any] = Field(default_factory=list)

    @model_validator(mode="after")
    def failures_on_fail(self) -> ComparisonOutput:
        if not self.passed and not self.failures:
            raise ValueError("pass=false but no failures provided")
        return self


_OUTPUT_MODELS: dict[str, type[BaseModel]] = {
    "info_worker": InfoWorkerOutput,
    "comparison": ComparisonOutput,
}


def _format_errors(exc: ValidationError) -> tuple[str, ...]:
    errors = []
    for err in exc.errors()[:_MAX_ERRORS_PER_CHECK]:
        loc = ".".join(str(p) for p in err["loc"])
        errors.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return tuple(errors)


def validate_service_result(job: WorkerJob) -> SchemaCheck:
    """Check the job's summary result against its service type."""
    name = f"{job.service}_result"
    result = job.result
    errors: list[str] = []

    if job.service not in KNOWN_SERVICES:
        return SchemaCheck(name=name, passed=False, errors=(f"Unknown service type: {job.service}",))
    if not result:
        if job.status == "completed":
            errors.append("Job marked completed but no result found")
        return SchemaCheck(name=name, passed=not errors, errors=tuple(errors))

    if job.service == "image_io":
        if not isinstance(result.get("images_count"), int):
            errors.append("Missing images_count")
        if not isinstance(result.get("artifact_ids"), list):
            errors.append("Missing or invalid artifact_ids array")
    elif job.service == "info_worker":
        if not result.get("artifact_id"):
            errors.append("Missing artifact_id")
        if "spaces_count" not in result:
            errors.append("Missing spaces_count")
        if result.get("schema_valid") is False:
            errors.append("Worker reported schema_valid=false")
    elif job.service == "comparison":
        if not isinstance(result.get("pass"), bool):
            errors.append("Missing pass boolean")
        if not result.get("recommended_next_step"):
            errors.append("Missing recommended_next_step")
    elif job.service == "supervisor":
        if not result.get("decision"):
            errors.append("Missing decision")

    return SchemaCheck(name=name, passed=not errors, errors=tuple(errors))


def validate_worker_output(worker_type: str, data: dict[str, Any]) -> SchemaCheck:
    """Check one worker output payload."""
    name = f"{worker_type}_output"
    model = _OUTPUT_MODELS.get(worker_type)
    if model is None:
        if not data:
            return SchemaCheck(name=name, passed=False, errors=("Empty output data",))
        return SchemaCheck(name=name, passed=True)
    try:
        model.model_validate(data)
    except ValidationError as e:
        return SchemaCheck(name=name, passed=False, errors=_format_errors(e))
    return SchemaCheck(name=name, passed=True)


def validate_job(job: WorkerJob) -> list[SchemaCheck]:
    """All schema checks for a job: its result, then each worker output."""
    checks = [validate_service_result(job)]
    checks.extend(validate_worker_output(o.worker_type, o.data) for o in job.outputs)
    failed = [c.name for c in checks if not c.passed]
    if failed:
        logger.info("Job %s failed schema checks: %s", job.job_id, ", ".join(failed))
    return checks
