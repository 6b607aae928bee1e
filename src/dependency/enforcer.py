# src/dependency/enforcer.py — v1
"""Sequential A→B dependency between paired outputs of one space.

Within a group (all units of one space in one step) slot A is produced
first. B is only ever dispatched with A's approved asset as its anchor;
when A ends up failed or waiting for review, B is blocked without a
generator call. Groups without a B slot run their units directly.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from qagate.core.errors import DependencyError, StatusConflictError, TerminalUnitError
from qagate.core.models import DISPATCHABLE_STATUSES, OutputUnit, UnitStatus
from qagate.engine.outcome import UnitOutcome

if TYPE_CHECKING:
    from qagate.storage.base_store import BaseEngineStore

logger = logging.getLogger(__name__)

PRIMARY_SLOT = "A"
DEPENDENT_SLOT = "B"
DEPENDENCY_FAILED = "CAMERA_A_DEPENDENCY_FAILED"

# A statuses that doom B for this round.
_A_FAILED_STATUSES = frozenset({UnitStatus.NEEDS_REVIEW, UnitStatus.BLOCKED, UnitStatus.FAILED})

DispatchFn = Callable[[OutputUnit, str | None], Awaitable[UnitOutcome]]


def check_dispatchable(unit: OutputUnit, anchor_ref: str | None) -> None:
    """Hard precondition of every dispatch: a B unit needs A's asset."""
    if unit.slot == DEPENDENT_SLOT and not anchor_ref:
        raise DependencyError(
            f"Unit {unit.unit_id} (slot {DEPENDENT_SLOT}) dispatched without the "
            f"approved slot {PRIMARY_SLOT} asset of space {unit.space_id}"
        )


def is_dependency_blocked(unit: OutputUnit) -> bool:
    return (
        unit.status == UnitStatus.BLOCKED
        and bool(unit.blocked_reason)
        and unit.blocked_reason.get("error") == DEPENDENCY_FAILED  # type: ignore[union-attr]
    )


def group_by_space(units: list[OutputUnit]) -> dict[str, list[OutputUnit]]:
    groups: dict[str, list[OutputUnit]] = {}
    for unit in units:
        groups.setdefault(unit.space_id, []).append(unit)
    return groups


class DependencyEnforcer:
    """Run one space group in A-then-B order."""

    def __init__(self, store: BaseEngineStore) -> None:
        self._store = store

    async def run_group(
        self, units: list[OutputUnit], dispatch: DispatchFn,
    ) -> list[UnitOutcome]:
        by_slot = {u.slot: u for u in units}
        a = by_slot.get(PRIMARY_SLOT)
        b = by_slot.get(DEPENDENT_SLOT)

        if b is None:
            return [await dispatch(u, None) for u in units if u.status == UnitStatus.QUEUED]

        outcomes: list[UnitOutcome] = []
        anchor_ref: str | None = None
        a_status = a.status if a is not None else None

        if a is not None and (a.locked_approved or (a.status == UnitStatus.APPROVED and a.asset_ref)):
            anchor_ref = a.asset_ref
            logger.info("Reusing approved %s asset of space %s", PRIMARY_SLOT, a.space_id)
        elif a is not None and a.status == UnitStatus.QUEUED:
            outcome = await dispatch(a, None)
            outcomes.append(outcome)
            a_status = outcome.status
            if outcome.status == UnitStatus.APPROVED:
                anchor_ref = outcome.asset_ref

        if b.locked_approved or b.excluded:
            return outcomes

        if anchor_ref:
            b = await self._requeue_if_dependency_blocked(b)
            if b.status == UnitStatus.QUEUED:
                outcomes.append(await dispatch(b, anchor_ref))
            return outcomes

        if a is None or a_status in _A_FAILED_STATUSES:
            outcomes.append(await self._block_dependent(b, a, a_status))
        else:
            logger.info(
                "Space %s: %s is %s, leaving %s for a later dispatch",
                b.space_id, PRIMARY_SLOT, a_status, DEPENDENT_SLOT,
            )
            outcomes.append(UnitOutcome(
                unit_id=b.unit_id, status=b.status, skipped=True, reason="awaiting_primary",
            ))
        return outcomes

    async def _requeue_if_dependency_blocked(self, b: OutputUnit) -> OutputUnit:
        if not is_dependency_blocked(b):
            return b
        try:
            return await self._store.update_unit_status(
                b.unit_id, UnitStatus.BLOCKED, UnitStatus.QUEUED, blocked_reason=None,
            )
        except (StatusConflictError, TerminalUnitError) as e:
            logger.info("Could not requeue %s: %s", b.unit_id, e)
            return await self._store.get_unit(b.unit_id)

    async def _block_dependent(
        self, b: OutputUnit, a: OutputUnit | None, a_status: UnitStatus | None,
    ) -> UnitOutcome:
        reason: dict[str, Any] = {
            "error": DEPENDENCY_FAILED,
            "message": (
                f"Slot {DEPENDENT_SLOT} of space {b.space_id} requires an approved "
                f"slot {PRIMARY_SLOT} output"
            ),
            "requires_camera_a": True,
            "a_status": a_status.value if a_status is not None else "missing",
        }
        if a is not None:
            reason["a_unit_id"] = a.unit_id
        try:
            blocked = await self._store.update_unit_status(
                b.unit_id,
                DISPATCHABLE_STATUSES | {UnitStatus.BLOCKED},
                UnitStatus.BLOCKED,
                blocked_reason=reason,
            )
        except (StatusConflictError, TerminalUnitError) as e:
            logger.info("Could not block %s: %s", b.unit_id, e)
            return UnitOutcome(unit_id=b.unit_id, status=b.status, skipped=True, reason=str(e))
        logger.warning("Blocked %s: %s is %s", b.unit_id, PRIMARY_SLOT, reason["a_status"])
        return UnitOutcome(
            unit_id=b.unit_id, status=blocked.status, attempts=blocked.attempt_count,
            reason=DEPENDENCY_FAILED,
        )

    async def ensure_pairs(self, units: list[OutputUnit]) -> list[OutputUnit]:
        """Create the missing A or B unit of every non-excluded paired space."""
        created: list[OutputUnit] = []
        for space_id, group in group_by_space(units).items():
            slots = {u.slot: u for u in group}
            source = slots.get(PRIMARY_SLOT) or slots.get(DEPENDENT_SLOT)
            if source is None or source.excluded:
                continue
            for slot in (PRIMARY_SLOT, DEPENDENT_SLOT):
                if slot in slots:
                    continue
                unit = OutputUnit(
                    unit_id=f"{source.run_id}:{source.step_index}:{space_id}:{slot}",
                    run_id=source.run_id,
                    step_index=source.step_index,
                    space_id=space_id,
                    slot=slot,
                    category=source.category,
                    prompt=source.prompt,
                    primary_ref=source.primary_ref,
                    reference_refs=list(source.reference_refs),
                    requires_reference_comparison=source.requires_reference_comparison,
                    max_attempts=source.max_attempts,
                )
                created.append(await self._store.create_unit(unit))
                logger.info("Created missing slot %s for space %s", slot, space_id)
        return created
