# src/calibration/store.py — v1
"""Human-feedback calibration store.

Writes happen only through ``record_feedback`` (a human decision on a
unit). The judge only ever calls ``build_guidance``.

Promotion of corrections into policy rules:
  1. Only disagreements (false_reject / false_approve) with a reason of
     at least ``calibration_min_reason_chars`` characters are considered.
  2. The reason is matched against pending/active rules of the same
     (scope, step, category, reason_category) by word overlap.
  3. A match increments ``support_count``; the rule becomes active once
     support reaches ``calibration_activation_support``.
  4. No match creates a new pending rule with support 1.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from qagate.calibration.guidance import CalibrationGuidance, build_guidance
from qagate.calibration.similarity import word_overlap_similarity
from qagate.core.models import (
    FeedbackCategory,
    FeedbackEvent,
    FeedbackOutcome,
    OutputUnit,
    PolicyRule,
    utcnow,
)

if TYPE_CHECKING:
    from qagate.config.settings import Settings
    from qagate.storage.base_store import BaseEngineStore

logger = logging.getLogger(__name__)

_RECENT_EVENTS = 20


@dataclass(frozen=True)
class FeedbackResult:
    """Outcome of recording one human decision."""

    event: FeedbackEvent
    outcome: FeedbackOutcome
    rule_id: str | None = None
    rule_status: str | None = None


def classify_outcome(user_decision: str, qa_decision: str) -> FeedbackOutcome:
    """Compare the human decision to the QA decision it reviews."""
    if user_decision == "approved" and qa_decision == "rejected":
        return "false_reject"
    if user_decision == "rejected" and qa_decision == "approved":
        return "false_approve"
    return "confirmed_correct"


class CalibrationStore:
    """Counters, policy rules and similar cases learned from human overrides."""

    def __init__(self, store: BaseEngineStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def record_feedback(
        self,
        unit: OutputUnit,
        scope: str,
        user_decision: str,
        reason_category: FeedbackCategory = "other",
        reason_text: str = "",
        user_score: int | None = None,
    ) -> FeedbackResult:
        verdict = unit.last_qa_report
        qa_decision = "approved" if verdict is not None and verdict.passed else "rejected"
        outcome = classify_outcome(user_decision, qa_decision)

        event = FeedbackEvent(
            unit_id=unit.unit_id,
            run_id=unit.run_id,
            scope=scope,
            step_index=unit.step_index,
            category=unit.category,
            user_decision=user_decision,  # type: ignore[arg-type]
            qa_decision=qa_decision,  # type: ignore[arg-type]
            qa_score=verdict.score if verdict is not None else None,
            user_score=user_score,
            reason_category=reason_category,
            reason_text=reason_text.strip(),
            outcome=outcome,
        )
        await self._store.record_feedback(event)
        await self._store.increment_counter(scope, unit.step_index, unit.category, outcome)

        rule: PolicyRule | None = None
        if outcome != "confirmed_correct" and len(event.reason_text) >= self._settings.calibration_min_reason_chars:
            rule = await self._promote(event)

        logger.info(
            "Feedback on %s: user=%s qa=%s outcome=%s rule=%s",
            unit.unit_id, user_decision, qa_decision, outcome,
            f"{rule.rule_id}({rule.status})" if rule else "none",
        )
        return FeedbackResult(
            event=event,
            outcome=outcome,
            rule_id=rule.rule_id if rule else None,
            rule_status=rule.status if rule else None,
        )

    async def _promote(self, event: FeedbackEvent) -> PolicyRule:
        candidates = [
            r for r in await self._store.list_rules(event.scope, event.step_index, event.category)
            if r.status in ("pending", "active") and r.reason_category == event.reason_category
        ]
        for rule in candidates:
            similarity = word_overlap_similarity(event.reason_text, rule.rule_text)
            if similarity >= self._settings.calibration_rule_similarity:
                support = rule.support_count + 1
                status = (
                    "active"
                    if support >= self._settings.calibration_activation_support
                    else rule.status
                )
                updated = rule.model_copy(update={
                    "support_count": support,
                    "status": status,
                    "updated_at": utcnow(),
                })
                await self._store.save_rule(updated)
                return updated

        rule = PolicyRule(
            rule_id=uuid.uuid4().hex[:12],
            scope=event.scope,
            step_index=event.step_index,
            category=event.category,
            reason_category=event.reason_category,
            rule_text=event.reason_text,
        )
        await self._store.save_rule(rule)
        return rule

    async def build_guidance(
        self, category: str, scope: str, step_index: int,
    ) -> CalibrationGuidance:
        """Single read used by the judge to bias its prompt and threshold."""
        counters = await self._store.get_counters(scope, step_index, category)
        events = await self._store.list_feedback(
            scope, step_index, category, limit=_RECENT_EVENTS,
        )
        rules = await self._store.list_rules(scope, step_index, category, status="active")
        return build_guidance(
            scope=scope,
            step_index=step_index,
            category=category,
            counters=counters,
            events=events,
            rules=rules,
            max_rules=self._settings.calibration_max_rules,
            max_cases=self._settings.calibration_similar_cases,
            adjustment_step=self._settings.judge_strictness_adjustment,
        )
