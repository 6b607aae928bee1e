# src/logging/context.py — v2
"""Contextual logging support — attach run_id, step, unit_id, component to log records.

Context variables are task-local under asyncio, so every fanned-out
group in the batch controller logs with its own unit identity.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_step: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "step", default=None
)
_unit_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "unit_id", default=None
)
_component: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "component", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    run_id: str | None = None
    step: int | None = None
    unit_id: str | None = None
    component: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        run_id=_run_id.get(),
        step=_step.get(),
        unit_id=_unit_id.get(),
        component=_component.get(),
    )


def set_run_context(run_id: str, step: int | None = None) -> None:
    """Set run-level context (called once per submitted step)."""
    _run_id.set(run_id)
    _step.set(step)


def set_unit_context(unit_id: str | None, component: str | None = None) -> None:
    """Set unit-level context (called per dispatched unit)."""
    _unit_id.set(unit_id)
    _component.set(component)


def set_component_context(component: str | None) -> None:
    """Set only the component name, keeping the rest of the context."""
    _component.set(component)


def clear_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _step.set(None)
    _unit_id.set(None)
    _component.set(None)
