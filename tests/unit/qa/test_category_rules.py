# tests/unit/qa/test_category_rules.py — v1
"""Tests for qa/category_rules.py."""

from __future__ import annotations

from qagate.qa.category_rules import normalize_category, render_rules, rules_for


class TestRulesFor:
    def test_exact(self):
        rule = rules_for("kitchen")
        assert rule is not None
        assert "toilet" in rule.forbidden

    def test_normalized_match(self):
        assert normalize_category("Master Bedroom 2") == "master_bedroom_2"
        rule = rules_for("Master Bedroom 2")
        assert rule is not None
        assert "bathtub" in rule.forbidden

    def test_bathroom_forbids_nothing(self):
        rule = rules_for("bathroom")
        assert rule is not None
        assert rule.forbidden == ()

    def test_unknown(self):
        assert rules_for("garage") is None


class TestRenderRules:
    def test_strict_section(self):
        text = render_rules("bedroom")
        assert "CATEGORY VALIDATION (STRICT)" in text
        assert "FORBIDDEN elements" in text
        assert "toilet" in text
        assert "room_type_violation = true" in text

    def test_generic_section(self):
        text = render_rules("garage")
        assert "Declared category: garage" in text
        assert "bathroom fixtures" in text
