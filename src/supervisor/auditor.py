# src/supervisor/auditor.py — v1
"""LLM audit of a worker job's consistency and reasoning quality.

The audit never raises: any service error, timeout or unparseable
response yields a conservative result (consistency 0.5, quality "poor")
flagged with the failure cause.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from qagate.config.settings import Settings
from qagate.core.models import AuditResult, RuleCheck, SchemaCheck, SupervisorDecision, WorkerJob
from qagate.llm.models import Message
from qagate.llm.retry import with_retry

if TYPE_CHECKING:
    from qagate.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

_PROMPT_PATH = Path(__file__).parent / "prompts" / "audit.txt"
_FENCED_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_FLAT_OBJECT_RE = re.compile(r"\{[^{}]*\}")

MAX_FLAGS = 10
MAX_RISK_NOTES = 500
_RESULT_PREVIEW = 500
_QUALITIES = ("excellent", "good", "acceptable", "poor")


class RawAudit(BaseModel):
    """Wire shape of the audit response; out-of-range values are repaired."""

    model_config = ConfigDict(extra="ignore")

    consistency_score: float = 0.85
    contradiction_flags: list[str] = []
    risk_notes: str = "Low risk"
    reasoning_quality: str = "good"

    @field_validator("consistency_score", mode="before")
    @classmethod
    def clamp_score(cls, v: Any) -> Any:  # noqa: N805
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return max(0.0, min(1.0, float(v)))
        return 0.85

    @field_validator("contradiction_flags", mode="before")
    @classmethod
    def cap_flags(cls, v: Any) -> Any:  # noqa: N805
        if not isinstance(v, list):
            return []
        return [str(f) for f in v[:MAX_FLAGS]]

    @field_validator("risk_notes", mode="before")
    @classmethod
    def cap_notes(cls, v: Any) -> Any:  # noqa: N805
        return v[:MAX_RISK_NOTES] if isinstance(v, str) else "Low risk"

    @field_validator("reasoning_quality", mode="before")
    @classmethod
    def known_quality(cls, v: Any) -> Any:  # noqa: N805
        return v if v in _QUALITIES else "good"

    def to_result(self) -> AuditResult:
        return AuditResult(
            consistency_score=self.consistency_score,
            contradiction_flags=tuple(self.contradiction_flags),
            risk_notes=self.risk_notes,
            reasoning_quality=self.reasoning_quality,  # type: ignore[arg-type]
        )


def failed_audit(cause: str) -> AuditResult:
    return AuditResult(
        consistency_score=0.5,
        contradiction_flags=(f"LLM audit failed: {cause}",),
        risk_notes="Audit failed - manual review recommended",
        reasoning_quality="poor",
        audit_failed=True,
    )


def parse_audit(text: str) -> AuditResult:
    """Extract the audit object from raw model text. Raises ValueError."""
    data: Any = None
    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError:
        match = _FENCED_RE.search(text) or _FLAT_OBJECT_RE.search(text)
        if match:
            data = json.loads(match.group(1) if match.re is _FENCED_RE else match.group(0))
    if not isinstance(data, dict):
        raise ValueError("No valid JSON object found in response")
    try:
        return RawAudit.model_validate(data).to_result()
    except ValidationError as e:
        raise ValueError(str(e)) from e


class SupervisorAuditor:
    """Ask the audit model to grade one job."""

    def __init__(self, client: BaseLLMClient, settings: Settings | None = None) -> None:
        self._client = client
        self._settings = settings or Settings()
        self._template: str | None = None

    def _load_prompt(self) -> str:
        if self._template is None:
            self._template = _PROMPT_PATH.read_text(encoding="utf-8")
        return self._template

    def build_prompt(
        self,
        job: WorkerJob,
        schema_checks: list[SchemaCheck],
        rule_checks: list[RuleCheck],
        previous: list[SupervisorDecision],
    ) -> str:
        return self._load_prompt().format(
            service=job.service,
            step_index=job.step_index,
            status=job.status,
            attempts=job.attempts,
            processing_time_ms=job.processing_time_ms,
            result=json.dumps(job.result, default=str)[:_RESULT_PREVIEW],
            error_line=f"ERROR: {job.error}\n" if job.error else "",
            schema_summary=", ".join(
                f"{c.name}: {'PASS' if c.passed else 'FAIL'}" for c in schema_checks
            ) or "(none)",
            rule_summary=", ".join(
                f"{r.rule}: {'PASS' if r.passed else 'FAIL'}" for r in rule_checks[:5]
            ) or "(none)",
            previous_decisions=", ".join(d.decision for d in previous[:5]) or "(none)",
        )

    async def audit(
        self,
        job: WorkerJob,
        schema_checks: list[SchemaCheck],
        rule_checks: list[RuleCheck],
        previous: list[SupervisorDecision] | None = None,
    ) -> AuditResult:
        prompt = self.build_prompt(job, schema_checks, rule_checks, previous or [])
        try:
            response = await asyncio.wait_for(
                with_retry(
                    self._client.complete,
                    component="auditor",
                    messages=[Message(role="user", content=prompt)],
                    temperature=0.1,
                    max_tokens=1024,
                    json_output=True,
                ),
                timeout=self._settings.audit_timeout_s,
            )
            result = parse_audit(response.content)
        except asyncio.TimeoutError:
            logger.warning("Audit of job %s timed out", job.job_id)
            return failed_audit(f"timed out after {self._settings.audit_timeout_s}s")
        except Exception as e:  # audit failures degrade to a conservative result
            logger.warning("Audit of job %s failed: %s", job.job_id, e)
            return failed_audit(str(e) or type(e).__name__)

        logger.info(
            "Audit of job %s: consistency=%.2f quality=%s flags=%d",
            job.job_id, result.consistency_score, result.reasoning_quality,
            len(result.contradiction_flags),
        )
        return result
