# src/calibration/guidance.py — v1
"""Calibration guidance: the read-only view of human feedback handed to the judge.

Guidance is soft. It can move the pass threshold by a fixed adjustment
and adds preference text to the judgment prompt, but the fixed category
rules always take precedence over it.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from qagate.core.models import CalibrationCounters, FeedbackEvent, PolicyRule

Strictness = Literal["lenient", "balanced", "strict"]

# Keyword → pattern label, counted across rejection reasons.
REJECTION_PATTERNS: tuple[tuple[str, str], ...] = (
    ("bed", "bed-related issues"),
    ("furniture", "furniture placement issues"),
    ("wall", "wall/structural issues"),
    ("door", "door/opening issues"),
    ("window", "window issues"),
    ("scale", "scale/proportion issues"),
    ("color", "color/material issues"),
    ("light", "lighting issues"),
    ("seam", "seam/edge issues"),
    ("artifact", "visual artifacts"),
    ("bathroom", "bathroom fixture issues"),
    ("kitchen", "kitchen element issues"),
)

_MAX_PREFERENCES = 10
_MIN_PATTERN_COUNT = 2
_HIGH_FALSE_RATE_PCT = 30
_MIN_DECISIONS_FOR_HINTS = 3

_HARD_RULES_HEADER = """HUMAN FEEDBACK MEMORY (soft preferences, NOT hard rules)

Human feedback influences BORDERLINE decisions only.
HARD RULES ALWAYS TAKE PRECEDENCE over human preferences:
- Layout fidelity (walls, doors, windows must match the reference plan)
- Camera intent (the render must show the specified camera angle)
- Room type consistency (no invented rooms or fixtures)
If human feedback contradicts a hard rule, the HARD RULE WINS."""


class CalibrationGuidance(BaseModel):
    """Guidance for one (scope, step, category) key."""

    scope: str
    step_index: int
    category: str
    strictness: Strictness = "balanced"
    false_reject_rate: int = 0  # percent
    false_accept_rate: int = 0  # percent
    total_decisions: int = 0
    threshold_adjustment: int = 0
    active_rules: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    similar_cases: list[str] = Field(default_factory=list)
    hints: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.total_decisions or self.active_rules or self.preferences)

    def to_prompt(self) -> str:
        """Render guidance for injection into the judgment prompt ("" when empty)."""
        if self.is_empty:
            return ""

        sections = [_HARD_RULES_HEADER]

        if self.total_decisions:
            if self.strictness == "strict":
                note = "USER IS STRICT: apply tighter constraints on borderline cases."
            elif self.strictness == "lenient":
                note = "USER IS LENIENT: only reject for clear violations."
            else:
                note = "USER IS BALANCED: apply standard thresholds."
            sections.append("CALIBRATION:\n" + " ".join([note, *self.hints]))

        if self.active_rules:
            lines = [f"{i}. {r}" for i, r in enumerate(self.active_rules, 1)]
            sections.append("ACTIVE POLICY RULES:\n" + "\n".join(lines))

        if self.preferences:
            lines = [f"{i}. {p}" for i, p in enumerate(self.preferences, 1)]
            sections.append("LEARNED USER PREFERENCES:\n" + "\n".join(lines))

        if self.similar_cases:
            lines = [f"{i}. {c}" for i, c in enumerate(self.similar_cases, 1)]
            sections.append("RECENT USER DECISIONS:\n" + "\n".join(lines))

        return "\n\n".join(sections)


def determine_strictness(events: list[FeedbackEvent]) -> Strictness:
    """Classify the reviewer from their scores and rejection rate.

    Without scores the average defaults to 50; without events the
    rejection rate defaults to 0.5, which yields "balanced".
    """
    scores = [e.user_score for e in events if e.user_score is not None]
    avg_score = sum(scores) / len(scores) if scores else 50.0
    rejections = sum(1 for e in events if e.user_decision == "rejected")
    rejection_rate = rejections / len(events) if events else 0.5

    if avg_score > 65 and rejection_rate < 0.3:
        return "lenient"
    if avg_score < 45 or rejection_rate > 0.6:
        return "strict"
    return "balanced"


def extract_rejection_patterns(events: list[FeedbackEvent]) -> list[str]:
    """Patterns that appear in at least two rejection reasons."""
    counts: dict[str, int] = {}
    for e in events:
        if e.user_decision != "rejected" or not e.reason_text:
            continue
        reason = e.reason_text.lower()
        for keyword, pattern in REJECTION_PATTERNS:
            if keyword in reason:
                counts[pattern] = counts.get(pattern, 0) + 1
    return [
        f"User frequently rejects due to {pattern} ({count}x)"
        for pattern, count in counts.items()
        if count >= _MIN_PATTERN_COUNT
    ]


def false_rate_hints(counters: CalibrationCounters) -> list[str]:
    hints: list[str] = []
    total = counters.total
    if total >= _MIN_DECISIONS_FOR_HINTS:
        reject_pct = round(100 * counters.false_reject / total)
        if reject_pct > _HIGH_FALSE_RATE_PCT:
            hints.append(
                f"WARNING: {reject_pct}% of past rejections were overturned by the user; "
                "be LESS strict on borderline cases."
            )
    if counters.false_accept > counters.confirmed_correct:
        hints.append(
            "WARNING: past approvals were often rejected by the user; "
            "be MORE strict on borderline cases."
        )
    return hints


def build_guidance(
    *,
    scope: str,
    step_index: int,
    category: str,
    counters: CalibrationCounters,
    events: list[FeedbackEvent],
    rules: list[PolicyRule],
    max_rules: int,
    max_cases: int,
    adjustment_step: int,
) -> CalibrationGuidance:
    """Assemble guidance from counters, recent feedback and active rules."""
    total = counters.total
    ranked = sorted(rules, key=lambda r: r.support_count, reverse=True)[:max_rules]

    preferences = [
        f"[{r.reason_category}] {r.rule_text}" for r in ranked[:5] if r.support_count >= 2
    ]
    for pattern in extract_rejection_patterns(events):
        if len(preferences) >= _MAX_PREFERENCES:
            break
        preferences.append(pattern)

    similar_cases = [
        f"{e.user_decision.upper()}: \"{e.reason_text[:100]}\" ({e.reason_category})"
        for e in events
        if e.reason_text and len(e.reason_text) > 5
    ][:max_cases]

    strictness = determine_strictness(events)
    adjustment = {"strict": adjustment_step, "lenient": -adjustment_step}.get(strictness, 0)

    return CalibrationGuidance(
        scope=scope,
        step_index=step_index,
        category=category,
        strictness=strictness,
        false_reject_rate=round(100 * counters.false_reject / total) if total else 0,
        false_accept_rate=round(100 * counters.false_accept / total) if total else 0,
        total_decisions=len(events),
        threshold_adjustment=adjustment if events else 0,
        active_rules=[r.rule_text for r in ranked],
        preferences=preferences,
        similar_cases=similar_cases,
        hints=false_rate_hints(counters),
    )
