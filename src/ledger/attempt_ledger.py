# src/ledger/attempt_ledger.py — v1
"""Append-only history of generation attempts per output unit.

The ledger owns attempt slots: ``reserve`` claims (unit, cycle, index)
before any external call so that two concurrent triggers for the same
unit can never both produce a record for the same slot.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from qagate.core.models import AttemptRecord, OutputUnit, QAVerdict

if TYPE_CHECKING:
    from qagate.storage.base_store import BaseEngineStore

logger = logging.getLogger(__name__)


class AttemptLedger:
    """Read/append facade over the store's attempt tables."""

    def __init__(self, store: BaseEngineStore) -> None:
        self._store = store

    async def reserve(self, unit: OutputUnit, run_ceiling: int | None = None) -> int | None:
        """Claim the next attempt slot for a unit.

        With ``run_ceiling`` the claim also counts against the run-wide
        attempt total, including slots other units hold but have not
        written yet.

        Returns:
            The reserved 1-based attempt index, or None when another
            caller already holds it.

        Raises:
            RunCeilingError: the run has no attempt left.
        """
        attempt_index = unit.attempt_count + 1
        claimed = await self._store.reserve_attempt(
            unit.unit_id, unit.cycle, attempt_index, run_id=unit.run_id, run_ceiling=run_ceiling,
        )
        if not claimed:
            logger.info(
                "Attempt %d of %s already reserved, skipping duplicate dispatch",
                attempt_index, unit.unit_id,
            )
            return None
        return attempt_index

    async def release(self, unit: OutputUnit, attempt_index: int) -> None:
        await self._store.release_attempt(unit.unit_id, unit.cycle, attempt_index)

    async def append(
        self,
        unit: OutputUnit,
        attempt_index: int,
        *,
        prompt: str,
        action: str,
        correction_guidance: str | None = None,
        anchor_ref: str | None = None,
        asset_ref: str | None = None,
        verdict: QAVerdict | None = None,
        error: str | None = None,
    ) -> AttemptRecord:
        record = AttemptRecord(
            unit_id=unit.unit_id,
            run_id=unit.run_id,
            cycle=unit.cycle,
            attempt_index=attempt_index,
            prompt=prompt,
            correction_guidance=correction_guidance,
            anchor_ref=anchor_ref,
            asset_ref=asset_ref,
            verdict=verdict,
            action=action,  # type: ignore[arg-type]
            error=error,
        )
        await self._store.persist_attempt(record)
        return record

    async def history(self, unit: OutputUnit) -> list[AttemptRecord]:
        """Attempts of the unit's current cycle, oldest first."""
        return await self._store.list_attempts(unit.unit_id, cycle=unit.cycle)

    async def run_total(self, run_id: str) -> int:
        return await self._store.count_run_attempts(run_id)
