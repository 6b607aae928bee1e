# tests/unit/calibration/test_guidance.py — v1
"""Tests for calibration/guidance.py — strictness, patterns and prompt rendering."""

from __future__ import annotations

from qagate.calibration.guidance import (
    CalibrationGuidance,
    build_guidance,
    determine_strictness,
    extract_rejection_patterns,
    false_rate_hints,
)
from qagate.core.models import CalibrationCounters, FeedbackEvent, PolicyRule


def _event(decision: str = "rejected", score: int | None = None, text: str = "") -> FeedbackEvent:
    return FeedbackEvent(
        unit_id="u1", run_id="r1", scope="global", step_index=6, category="bedroom",
        user_decision=decision, qa_decision="approved", user_score=score,  # type: ignore[arg-type]
        reason_text=text, outcome="false_approve",
    )


def _counters(**kwargs) -> CalibrationCounters:
    return CalibrationCounters(scope="global", step_index=6, category="bedroom", **kwargs)


def _build(events=(), rules=(), counters=None) -> CalibrationGuidance:
    return build_guidance(
        scope="global", step_index=6, category="bedroom",
        counters=counters or _counters(), events=list(events), rules=list(rules),
        max_rules=10, max_cases=5, adjustment_step=5,
    )


class TestStrictness:
    def test_no_events_is_balanced(self):
        assert determine_strictness([]) == "balanced"

    def test_lenient(self):
        events = [_event("approved", 80) for _ in range(4)]
        assert determine_strictness(events) == "lenient"

    def test_strict_by_rejection_rate(self):
        events = [_event("rejected") for _ in range(3)] + [_event("approved")]
        assert determine_strictness(events) == "strict"

    def test_strict_by_low_scores(self):
        events = [_event("approved", 30), _event("approved", 40)]
        assert determine_strictness(events) == "strict"


class TestPatternsAndHints:
    def test_pattern_needs_two_occurrences(self):
        events = [_event(text="Bed too large"), _event(text="bed faces wall"), _event(text="window")]
        patterns = extract_rejection_patterns(events)
        assert "User frequently rejects due to bed-related issues (2x)" in patterns
        assert not any("window" in p for p in patterns)

    def test_approvals_ignored(self):
        events = [_event("approved", text="bed"), _event("approved", text="bed")]
        assert extract_rejection_patterns(events) == []

    def test_high_false_reject_rate(self):
        hints = false_rate_hints(_counters(false_reject=2, confirmed_correct=2))
        assert any("LESS strict" in h for h in hints)

    def test_false_accepts_outnumber_confirmed(self):
        hints = false_rate_hints(_counters(false_accept=2, confirmed_correct=1))
        assert any("MORE strict" in h for h in hints)

    def test_no_hints_without_data(self):
        assert false_rate_hints(_counters()) == []


class TestBuildGuidance:
    def test_empty(self):
        g = _build()
        assert g.is_empty
        assert g.to_prompt() == ""
        assert g.threshold_adjustment == 0

    def test_strict_raises_threshold(self):
        g = _build(events=[_event("rejected", 20, "bed too big") for _ in range(3)])
        assert g.strictness == "strict"
        assert g.threshold_adjustment == 5

    def test_lenient_lowers_threshold(self):
        g = _build(events=[_event("approved", 90) for _ in range(3)])
        assert g.threshold_adjustment == -5

    def test_active_rules_ranked_by_support(self):
        rules = [
            PolicyRule(rule_id="a", scope="global", step_index=6, category="bedroom",
                       rule_text="low support", support_count=3, status="active"),
            PolicyRule(rule_id="b", scope="global", step_index=6, category="bedroom",
                       rule_text="high support", support_count=7, status="active"),
        ]
        g = _build(rules=rules)
        assert g.active_rules == ["high support", "low support"]
        prompt = g.to_prompt()
        assert "ACTIVE POLICY RULES" in prompt
        assert "HARD RULE WINS" in prompt

    def test_similar_cases_limited(self):
        events = [_event(text=f"reason number {i}") for i in range(8)]
        g = _build(events=events)
        assert len(g.similar_cases) == 5
        assert g.similar_cases[0].startswith("REJECTED:")

    def test_rates(self):
        g = _build(events=[_event()], counters=_counters(false_reject=1, false_accept=1, confirmed_correct=2))
        assert g.false_reject_rate == 25
        assert g.false_accept_rate == 25
        assert "CALIBRATION:" in g.to_prompt()
