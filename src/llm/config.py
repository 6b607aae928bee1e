# src/llm/config.py — v2
"""Per-component LLM routing with cascade resolution.

Resolution order:
  1. Per-component env var (LLM_JUDGE=google:gemini-3-pro-image-preview)
  2. Per-phase env var (LLM_PHASE_QA=anthropic:claude-sonnet-4-20250514)
  3. Built-in component default (config/agents.py COMPONENT_DEFAULTS)
  4. Default provider + model (LLM_DEFAULT_PROVIDER + LLM_DEFAULT_MODEL)
  5. Hardcoded fallback
"""

from __future__ import annotations

from dataclasses import dataclass

from qagate.config.agents import COMPONENT_DEFAULTS, PHASE_COMPONENT_MAP
from qagate.config.settings import Settings

_FALLBACK_PROVIDER = "google"
_FALLBACK_MODEL = "gemini-2.5-pro"


@dataclass(frozen=True)
class LLMAssignment:
    """Resolved LLM provider:model for a component."""

    provider: str
    model: str
    source: str  # "component", "phase", "builtin", "default", or "fallback"

    @property
    def key(self) -> str:
        """Return 'provider:model' string."""
        return f"{self.provider}:{self.model}"


def _find_phase(component: str) -> str | None:
    for phase, components in PHASE_COMPONENT_MAP.items():
        if component in components:
            return phase
    return None


def _parse_assignment(value: str) -> tuple[str, str] | None:
    """Parse 'provider:model' string. Returns None if empty or malformed."""
    if not value or ":" not in value:
        return None
    provider, model = value.split(":", 1)
    if not provider.strip() or not model.strip():
        return None
    return (provider.strip(), model.strip())


def resolve_llm(component: str, settings: Settings) -> LLMAssignment:
    """Resolve the LLM assignment for a component.

    Args:
        component: Component name ("judge", "judge_fallback", "auditor").
        settings: Application settings.
    """
    parsed = _parse_assignment(getattr(settings, f"llm_{component}", ""))
    if parsed:
        return LLMAssignment(provider=parsed[0], model=parsed[1], source="component")

    phase = _find_phase(component)
    if phase:
        parsed = _parse_assignment(getattr(settings, f"llm_phase_{phase}", ""))
        if parsed:
            return LLMAssignment(provider=parsed[0], model=parsed[1], source="phase")

    parsed = _parse_assignment(COMPONENT_DEFAULTS.get(component, ""))
    if parsed:
        return LLMAssignment(provider=parsed[0], model=parsed[1], source="builtin")

    if settings.llm_default_provider and settings.llm_default_model:
        return LLMAssignment(
            provider=settings.llm_default_provider,
            model=settings.llm_default_model,
            source="default",
        )

    return LLMAssignment(
        provider=_FALLBACK_PROVIDER,
        model=_FALLBACK_MODEL,
        source="fallback",
    )


def resolve_all(settings: Settings) -> dict[str, LLMAssignment]:
    """Resolve LLM assignments for all known components."""
    all_components: set[str] = set()
    for components in PHASE_COMPONENT_MAP.values():
        all_components.update(components)

    return {comp: resolve_llm(comp, settings) for comp in sorted(all_components)}
