# src/config/agents.py — v2
"""Declarative component configuration for LLM routing.

Components are the engine parts that call an external judgment model.
Each component belongs to one phase so that a single LLM_PHASE_* variable
can route the whole group.
"""

from __future__ import annotations

# Phase-to-component mapping for LLM routing (see llm/config.py).
PHASE_COMPONENT_MAP: dict[str, list[str]] = {
    "qa": ["judge", "judge_fallback"],
    "supervision": ["auditor"],
}

# Built-in defaults used when neither component nor phase is configured.
COMPONENT_DEFAULTS: dict[str, str] = {
    "judge": "google:gemini-3-pro-image-preview",
    "judge_fallback": "google:gemini-2.5-pro",
    "auditor": "google:gemini-2.5-flash",
}
