# src/qa/category_rules.py — v1
"""Fixed content-category rules for the judge.

Each declared space category lists what must be visible (at least one
alternative) and what must never appear. Unknown categories fall back to
a generic rule that only forbids bathroom fixtures outside bathrooms.
"""

from __future__ import annotations

from dataclasses import dataclass

_BATHROOM_FIXTURES = ("toilet", "shower", "bathtub", "bathroom sink", "urinal", "bidet")


@dataclass(frozen=True)
class CategoryRule:
    required: tuple[str, ...]
    forbidden: tuple[str, ...]


# Order matters: "master_bedroom" must match before "bedroom" would for
# names like "master_bedroom_2", and "bathroom" before "bath".
CATEGORY_RULES: dict[str, CategoryRule] = {
    "master_bedroom": CategoryRule(("bed OR sleeping surface",), _BATHROOM_FIXTURES),
    "bedroom": CategoryRule(("bed OR sleeping surface",), _BATHROOM_FIXTURES),
    "bathroom": CategoryRule(("toilet OR shower OR bathtub OR bathroom sink",), ()),
    "kitchen": CategoryRule(
        ("kitchen counter OR cabinets OR stove OR oven",),
        ("toilet", "shower", "bathtub", "bed"),
    ),
    "living_room": CategoryRule(
        ("sofa OR seating OR chairs",),
        ("toilet", "shower", "bathtub", "bed", "kitchen appliances"),
    ),
    "closet": CategoryRule(
        ("shelves OR hanging rail OR storage",),
        ("toilet", "shower", "bathtub", "bed"),
    ),
    "dining": CategoryRule(
        ("dining table OR eating surface",),
        ("toilet", "shower", "bathtub", "bed"),
    ),
}


def normalize_category(category: str) -> str:
    return "_".join(category.lower().split())


def rules_for(category: str) -> CategoryRule | None:
    """Return the rule whose key is contained in the normalized category."""
    normalized = normalize_category(category)
    for key, rule in CATEGORY_RULES.items():
        if key in normalized:
            return rule
    return None


def render_rules(category: str) -> str:
    """Prompt section describing the category constraints."""
    rule = rules_for(category)
    if rule is None:
        return (
            "CATEGORY VALIDATION:\n"
            f"- Declared category: {category}\n"
            f"- Verify the image shows fixtures appropriate for a {category}\n"
            "- Flag any bathroom fixtures (toilet, shower, bathtub, sink) in non-bathroom spaces"
        )

    forbidden = ", ".join(rule.forbidden) if rule.forbidden else "(none)"
    return (
        "CATEGORY VALIDATION (STRICT):\n"
        f"- Declared category: {category}\n"
        f"- REQUIRED elements (at least one must be visible): {', '.join(rule.required)}\n"
        f"- FORBIDDEN elements (MUST NOT appear): {forbidden}\n"
        "If ANY forbidden element is detected the judgment MUST FAIL with "
        "room_type_violation = true, a description of the fixture found and its location."
    )
