# src/retry/corrections.py — v1
"""Reason-code specific corrective prompt deltas appended on retry."""

from __future__ import annotations

from collections.abc import Iterable

_GEOMETRY = "CRITICAL: Preserve ALL wall angles exactly as shown. Do NOT straighten angled walls."
_SCALE = "CRITICAL: Maintain exact scale and proportions from floor plan dimensions."

REASON_CORRECTIONS: dict[str, str] = {
    "GEOMETRY_DISTORTION": _GEOMETRY,
    "WALL_RECTIFICATION": _GEOMETRY,
    "SCALE_MISMATCH": _SCALE,
    "FURNITURE_MISMATCH": _SCALE,
    "STYLE_INCONSISTENCY": "CRITICAL: Match the design style exactly as specified in the style reference.",
    "MISSING_FURNISHINGS": "CRITICAL: Include all required furniture items for this room type.",
    "DUPLICATED_OBJECTS": "Do NOT repeat the same object; every furniture item must appear once.",
    "SEAM_ARTIFACTS": "Remove visible seams and edge artifacts; surfaces must be continuous.",
    "PERSPECTIVE_ERROR": "Render strictly from the specified camera position and direction.",
    "COLOR_INCONSISTENCY": "Keep lighting and material colors consistent with the approved references.",
}


def corrections_for(reason_codes: Iterable[str]) -> list[str]:
    """Corrective instructions for the given codes, deduplicated, first-seen order."""
    seen: list[str] = []
    for code in reason_codes:
        text = REASON_CORRECTIONS.get(code)
        if text and text not in seen:
            seen.append(text)
    return seen
