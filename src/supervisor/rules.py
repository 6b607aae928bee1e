# src/supervisor/rules.py — v1
"""Deterministic rule checks applied to every supervised job.

A failed rule is either a warning (counts as a failure that may trigger
a retry) or blocking. Limits come from Settings.
"""

from __future__ import annotations

from typing import Any

from qagate.config.settings import Settings
from qagate.core.models import (
    AuditResult,
    PipelineRun,
    RuleCheck,
    SchemaCheck,
    SupervisorDecision,
    WorkerJob,
)

BUDGET_RULE = "retry_budget_available"
RECENT_DECISION_WINDOW = 10


def rule(name: str, passed: bool, message: str, blocked: bool = False) -> RuleCheck:
    if passed:
        severity = "info"
    elif blocked:
        severity = "blocked"
    else:
        severity = "warning"
    return RuleCheck(rule=name, passed=passed, severity=severity, message=message)  # type: ignore[arg-type]


def retry_budget(run: PipelineRun, settings: Settings) -> int:
    """Remaining supervisor retries: the tighter of the step and run budgets."""
    step_left = settings.supervisor_max_retries_per_step - run.step_retries
    total_left = settings.supervisor_max_total_retries - run.total_retries
    return max(0, min(step_left, total_left))


def _latest_spaces(job: WorkerJob) -> list[dict[str, Any]] | None:
    for output in job.outputs:
        if output.worker_type == "info_worker":
            spaces = output.data.get("spaces")
            return [s for s in spaces if isinstance(s, dict)] if isinstance(spaces, list) else []
    return None


def _confidence(space: dict[str, Any]) -> float:
    value = space.get("confidence")
    return float(value) if isinstance(value, (int, float)) else 0.0


def _service_rules(job: WorkerJob, settings: Settings) -> list[RuleCheck]:
    checks: list[RuleCheck] = []

    if job.service == "image_io":
        count = job.result.get("images_count")
        count = count if isinstance(count, int) else 0
        checks.append(rule(
            "images_present", count > 0,
            f"{count} images produced" if count > 0 else "No images in result",
            blocked=count <= 0,
        ))
        if count:
            limit = settings.supervisor_max_images
            checks.append(rule(
                "images_within_limit", count <= limit, f"{count}/{limit} images", blocked=count > limit,
            ))

    elif job.service == "info_worker":
        spaces = _latest_spaces(job)
        if spaces is not None:
            checks.append(rule(
                "spaces_detected", bool(spaces),
                f"{len(spaces)} spaces detected" if spaces else "No spaces detected",
                blocked=not spaces,
            ))
            limit = settings.supervisor_max_spaces
            checks.append(rule(
                "spaces_within_limit", len(spaces) <= limit,
                f"{len(spaces)}/{limit} max spaces", blocked=len(spaces) > limit,
            ))
            unflagged = [
                s for s in spaces
                if _confidence(s) < settings.supervisor_low_confidence
                and not s.get("ambiguity_flags")
            ]
            checks.append(rule(
                "low_confidence_flagged", not unflagged,
                "All low-confidence spaces have ambiguity flags"
                if not unflagged
                else f"{len(unflagged)} low-confidence spaces without flags",
            ))

    return checks


def evaluate_rules(
    job: WorkerJob,
    run: PipelineRun,
    schema_checks: list[SchemaCheck],
    recent_decisions: list[SupervisorDecision],
    settings: Settings,
) -> list[RuleCheck]:
    """Rule checks that do not depend on the audit."""
    budget = retry_budget(run, settings)
    checks = [
        rule(
            "job_status_valid", job.status == "completed",
            f"Job status is '{job.status}'", blocked=job.status == "failed",
        ),
        rule(
            BUDGET_RULE, budget > 0,
            f"{run.step_retries}/{settings.supervisor_max_retries_per_step} step retries, "
            f"{run.total_retries}/{settings.supervisor_max_total_retries} total retries",
            blocked=budget <= 0 and job.status != "completed",
        ),
    ]

    if job.processing_time_ms:
        limit = settings.supervisor_processing_timeout_ms
        checks.append(rule(
            "processing_time_acceptable", job.processing_time_ms <= limit,
            f"Processing took {job.processing_time_ms}ms (limit: {limit}ms)",
        ))

    if job.error:
        checks.append(rule(
            "no_execution_errors", False, f"Job error: {job.error[:200]}", blocked=True,
        ))

    checks.extend(_service_rules(job, settings))

    schema_failures = [c for c in schema_checks if not c.passed]
    if schema_failures:
        checks.append(rule(
            "all_schemas_valid", False,
            f"{len(schema_failures)} schema validation(s) failed", blocked=True,
        ))

    recent = recent_decisions[:RECENT_DECISION_WINDOW]
    retries = sum(1 for d in recent if d.decision == "retry")
    if retries >= settings.supervisor_retry_loop_warn:
        checks.append(rule(
            "no_retry_loops", False,
            f"Detected {retries} recent retries - possible loop",
            blocked=retries >= settings.supervisor_retry_loop_block,
        ))

    return checks


def consistency_rule(audit: AuditResult, settings: Settings) -> RuleCheck | None:
    threshold = settings.supervisor_min_consistency
    if audit.consistency_score >= threshold:
        return None
    return rule(
        "consistency_threshold", False,
        f"Consistency score {audit.consistency_score:.2f} < {threshold} threshold",
        blocked=True,
    )
