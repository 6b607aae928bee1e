# src/qa/judge.py — v1
"""QA judge — turns a candidate asset plus its declared context into a QAVerdict.

Request = fixed category rules + calibration guidance + reference images
+ candidate image. The raw judgment is parsed into a tagged result, then
normalized:

  - score clamped to [0, 100], confidence to [0, 1]
  - category (room-type) violation → fail, score ≤ 30, critical flag
  - structural violation → fail, score ≤ 25
  - required reference comparison missing → fail, score ≤ 40,
    ``validation_incomplete``
  - pass also requires score ≥ threshold (threshold moved by guidance)
  - a failing verdict with a critical issue carries the critical flag

Service failures fall back once to the secondary model; if that fails
too the verdict is ``needs_human`` with confidence 0. Parse failures are
fail verdicts with confidence 0 that go through normal retry routing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from qagate.calibration.guidance import CalibrationGuidance
from qagate.config.settings import Settings
from qagate.core.models import QAIssue, QAReason, QAVerdict
from qagate.llm.models import ImageInput, LLMResponse, Message
from qagate.llm.retry import classify_error
from qagate.qa.category_rules import render_rules
from qagate.qa.parsing import JudgmentParseError, ParsedJudgment, parse_judgment

if TYPE_CHECKING:
    from qagate.calibration.store import CalibrationStore
    from qagate.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

_PROMPT_PATH = Path(__file__).parent / "prompts" / "judge.txt"
_SYSTEM = "You are a meticulous visual quality inspector. Respond with JSON only."


class JudgeUnavailableError(Exception):
    """Both the primary and the fallback judgment models failed."""

    def __init__(self, message: str, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)


@dataclass
class JudgeContext:
    """Declared context of the asset under judgment."""

    category: str
    step_index: int
    scope: str = "global"
    prompt: str = ""
    requires_reference_comparison: bool = False
    references: list[ImageInput] = field(default_factory=list)
    anchor: ImageInput | None = None


class QAJudge:
    """Evaluate generated assets against category rules and references."""

    def __init__(
        self,
        primary: BaseLLMClient,
        fallback: BaseLLMClient | None = None,
        calibration: CalibrationStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._calibration = calibration
        self._settings = settings or Settings()
        self._prompt_template: str | None = None

    async def evaluate(self, asset: ImageInput, context: JudgeContext) -> QAVerdict:
        guidance = await self._guidance(context)
        prompt = self._format_prompt(context, guidance)
        images = self._images(asset, context)

        try:
            response = await self._call_with_fallback(prompt, images)
        except JudgeUnavailableError as e:
            logger.error("Judgment unavailable for %s: %s", context.category, e)
            return self._unavailable_verdict(e)

        parsed = parse_judgment(response.content)
        if isinstance(parsed, JudgmentParseError):
            logger.warning("Unparseable judgment from %s: %s", response.model, parsed.message)
            return self._parse_failure_verdict(parsed, response.model)

        verdict = self._normalize(parsed, context, guidance, response.model)
        logger.info(
            "Verdict: pass=%s score=%d confidence=%.2f room_violation=%s structural=%s",
            verdict.passed, verdict.score, verdict.confidence,
            verdict.room_type_violation, verdict.structural_violation,
        )
        return verdict

    # --- Request building ---

    async def _guidance(self, context: JudgeContext) -> CalibrationGuidance:
        if self._calibration is None:
            return CalibrationGuidance(
                scope=context.scope, step_index=context.step_index, category=context.category,
            )
        return await self._calibration.build_guidance(
            context.category, context.scope, context.step_index,
        )

    def _load_prompt(self) -> str:
        if self._prompt_template is None:
            self._prompt_template = _PROMPT_PATH.read_text(encoding="utf-8")
        return self._prompt_template

    def _format_prompt(self, context: JudgeContext, guidance: CalibrationGuidance) -> str:
        if context.references:
            comparison = (
                f"REFERENCE COMPARISON (REQUIRED): {len(context.references)} reference image(s) "
                "are attached before the candidate. Walls, openings and room boundaries in the "
                "candidate must match them exactly. Set reference_comparison_performed=true "
                "only if you compared them."
            )
        elif context.requires_reference_comparison:
            comparison = (
                "REFERENCE COMPARISON: required but no reference image is available. "
                "Set reference_comparison_performed=false."
            )
        else:
            comparison = "REFERENCE COMPARISON: not required for this step."
        if context.anchor is not None:
            comparison += (
                "\nANCHOR: the image labeled ANCHOR is the approved sibling view of the same "
                "space. The candidate must show the same room, furniture and materials."
            )

        return self._load_prompt().format(
            generation_prompt=context.prompt or "(not provided)",
            category_rules=render_rules(context.category),
            comparison_instructions=comparison,
            calibration_guidance=guidance.to_prompt(),
        )

    @staticmethod
    def _images(asset: ImageInput, context: JudgeContext) -> list[ImageInput]:
        images: list[ImageInput] = []
        for i, ref in enumerate(context.references, 1):
            images.append(ref.model_copy(update={"label": ref.label or f"REFERENCE {i}"}))
        if context.anchor is not None:
            images.append(context.anchor.model_copy(update={"label": "ANCHOR"}))
        images.append(asset.model_copy(update={"label": "CANDIDATE"}))
        return images

    async def _call_with_fallback(self, prompt: str, images: list[ImageInput]) -> LLMResponse:
        clients = [self._primary] + ([self._fallback] if self._fallback is not None else [])
        failures: list[str] = []
        all_timeouts = True
        for client in clients:
            try:
                return await asyncio.wait_for(
                    client.complete_with_vision(
                        messages=[Message(role="user", content=prompt)],
                        images=images,
                        system=_SYSTEM,
                        temperature=self._settings.llm_default_temperature,
                        max_tokens=self._settings.llm_max_tokens,
                        json_output=True,
                    ),
                    timeout=self._settings.judge_timeout_s,
                )
            except Exception as e:  # any service failure moves on to the next model
                kind = classify_error(e)
                all_timeouts = all_timeouts and kind == "timeout"
                failures.append(f"{client.model_name}: {kind}: {e}")
                logger.warning("Judge model %s failed (%s): %s", client.model_name, kind, e)
        raise JudgeUnavailableError("; ".join(failures), timed_out=all_timeouts)

    # --- Verdict construction ---

    def _normalize(
        self,
        parsed: ParsedJudgment,
        context: JudgeContext,
        guidance: CalibrationGuidance,
        model: str,
    ) -> QAVerdict:
        s = self._settings
        score = int(round(min(max(parsed.score, 0.0), 100.0)))
        raw_confidence = parsed.confidence
        if raw_confidence is None:
            raw_confidence = 0.8 if parsed.passed else 0.7
        confidence = min(max(raw_confidence, 0.0), 1.0)

        passed = parsed.passed
        issues = list(parsed.issues)
        reasons: dict[str, QAReason] = {r.code: r for r in parsed.reasons}
        corrections: list[str] = []
        critical = False
        action = parsed.recommended_action

        if parsed.room_type_violation:
            detected = parsed.detected_category or "different room type"
            passed = False
            critical = True
            score = min(score, s.judge_violation_score_cap)
            issues.insert(0, QAIssue(
                type="room_type",
                severity="critical",
                description=f"Category mismatch: expected {context.category} but image shows {detected}",
                location="entire image",
            ))
            reasons.setdefault("WRONG_ROOM_TYPE", QAReason(
                code="WRONG_ROOM_TYPE", description=f"expected {context.category}, found {detected}",
            ))
            corrections.append(
                f"CRITICAL: This space is a {context.category}, NOT a {detected}. "
                f"Do NOT include fixtures that belong to a {detected}. "
                f"Generate appropriate {context.category} furniture instead."
            )

        if parsed.structural_violation:
            passed = False
            score = min(score, s.judge_structural_score_cap)
            reasons.setdefault("GEOMETRY_DISTORTION", QAReason(
                code="GEOMETRY_DISTORTION", description="structure differs from reference",
            ))
            corrections.append(
                "CRITICAL: Structural elements do not match the reference plan. Regenerate "
                "ensuring walls, openings, and room boundaries EXACTLY match the reference layout."
            )

        incomplete = context.requires_reference_comparison and (
            not context.references or parsed.reference_comparison_performed is not True
        )
        if incomplete:
            passed = False
            score = min(score, s.judge_incomplete_score_cap)
            missing = not context.references
            issues.append(QAIssue(
                type="validation_incomplete",
                severity="high",
                description=(
                    "Reference comparison was required but no reference was available"
                    if missing
                    else "Reference comparison was required but not performed"
                ),
            ))
            code = "INVALID_INPUT" if missing else "LOW_CONFIDENCE"
            reasons.setdefault(code, QAReason(code=code, description="validation_incomplete"))  # type: ignore[arg-type]
            if missing:
                action = "needs_human"

        threshold = s.judge_pass_threshold + guidance.threshold_adjustment
        if passed and score < threshold:
            passed = False
            issues.append(QAIssue(
                type="below_threshold",
                severity="medium",
                description=f"Score {score} below pass threshold {threshold}",
            ))
            reasons.setdefault("LOW_CONFIDENCE", QAReason(
                code="LOW_CONFIDENCE", description=f"score {score} < {threshold}",
            ))

        if parsed.corrected_instructions:
            corrections.append(parsed.corrected_instructions)
        if not passed and not corrections:
            corrections.extend(i.description for i in issues[:2] if i.description)
        # A critical issue reported by the model stops automatic retries.
        if not passed and any(i.severity == "critical" for i in parsed.issues):
            critical = True

        if passed:
            recommended = "approve"
        elif action == "needs_human":
            recommended = "needs_human"
        else:
            recommended = "retry"

        return QAVerdict(
            passed=passed,
            score=score,
            confidence=confidence,
            room_type_violation=parsed.room_type_violation,
            structural_violation=parsed.structural_violation,
            critical_violation=critical,
            validation_incomplete=incomplete,
            detected_category=parsed.detected_category,
            issues=tuple(issues),
            reasons=tuple(reasons.values()) if not passed else (),
            corrected_instructions="\n".join(corrections) if not passed else "",
            recommended_action=recommended,  # type: ignore[arg-type]
            model_used=model,
        )

    @staticmethod
    def _parse_failure_verdict(error: JudgmentParseError, model: str) -> QAVerdict:
        return QAVerdict(
            passed=False,
            score=0,
            confidence=0.0,
            issues=(QAIssue(type="parse_error", severity="high", description=error.message),),
            reasons=(QAReason(code="SCHEMA_INVALID", description=error.message),),
            recommended_action="retry",
            model_used=model,
            parse_error=error.message,
        )

    @staticmethod
    def _unavailable_verdict(error: JudgeUnavailableError) -> QAVerdict:
        code = "TIMEOUT" if error.timed_out else "API_ERROR"
        return QAVerdict(
            passed=False,
            score=0,
            confidence=0.0,
            issues=(QAIssue(type="judge_unavailable", severity="high", description=str(error)),),
            reasons=(QAReason(code=code, description=str(error)),),  # type: ignore[arg-type]
            recommended_action="needs_human",
        )
