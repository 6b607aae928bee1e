# src/engine/outcome.py — v1
"""Result record of one unit dispatch, shared by the executor and the dependency enforcer."""

from __future__ import annotations

from dataclasses import dataclass

from qagate.core.models import UnitStatus


@dataclass(frozen=True)
class UnitOutcome:
    """Final state of one dispatch."""

    unit_id: str
    status: UnitStatus
    attempts: int = 0
    asset_ref: str | None = None
    reason: str = ""
    skipped: bool = False
