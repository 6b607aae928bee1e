# tests/unit/dependency/test_enforcer.py — v1
"""Tests for dependency/enforcer.py — A-then-B ordering within a space."""

from __future__ import annotations

import pytest

from doubles import ScriptedJudge, failing, passing, run_at_step
from qagate.core.errors import DependencyError
from qagate.core.models import OutputUnit, UnitStatus
from qagate.dependency.enforcer import (
    DEPENDENCY_FAILED,
    DependencyEnforcer,
    check_dispatchable,
    group_by_space,
    is_dependency_blocked,
)
from qagate.engine.executor import UnitExecutor


def _unit(slot: str, space: str = "space_bed", status: UnitStatus = UnitStatus.QUEUED, **kw) -> OutputUnit:
    return OutputUnit(
        unit_id=f"{space}:{slot}", run_id="run_1", step_index=6, space_id=space, slot=slot,
        category=kw.pop("category", "bedroom"), prompt="Render", status=status, **kw,
    )


async def _setup(store, *units: OutputUnit) -> list[OutputUnit]:
    await run_at_step(store, 6)
    return [await store.create_unit(u) for u in units]


def _dispatcher(executor: UnitExecutor):
    async def dispatch(unit, anchor_ref):
        return await executor.execute(unit.unit_id, anchor_ref=anchor_ref)
    return dispatch


class TestHelpers:
    def test_check_dispatchable(self):
        check_dispatchable(_unit("A"), None)
        check_dispatchable(_unit("B"), "a.png")
        with pytest.raises(DependencyError):
            check_dispatchable(_unit("B"), None)

    def test_is_dependency_blocked(self):
        assert is_dependency_blocked(_unit("B", status=UnitStatus.BLOCKED, blocked_reason={"error": DEPENDENCY_FAILED}))
        assert not is_dependency_blocked(_unit("B", status=UnitStatus.BLOCKED, blocked_reason={"error": "OTHER"}))
        assert not is_dependency_blocked(_unit("B", status=UnitStatus.BLOCKED))

    def test_group_by_space(self):
        groups = group_by_space([_unit("A", "s1"), _unit("B", "s1"), _unit("A", "s2")])
        assert {k: len(v) for k, v in groups.items()} == {"s1": 2, "s2": 1}


class TestRunGroup:
    @pytest.mark.asyncio
    async def test_a_then_b_with_anchor(self, store, generator, loader, settings, no_sleep):
        units = await _setup(store, _unit("A"), _unit("B"))
        executor = UnitExecutor(store, generator, ScriptedJudge(passing()), loader, settings=settings, sleep=no_sleep)

        outcomes = await DependencyEnforcer(store).run_group(units, _dispatcher(executor))

        assert [o.unit_id for o in outcomes] == ["space_bed:A", "space_bed:B"]
        assert all(o.status == UnitStatus.APPROVED for o in outcomes)
        assert generator.calls[0]["anchor_ref"] is None
        assert generator.calls[1]["anchor_ref"] == "asset_1.png"

    @pytest.mark.asyncio
    async def test_failed_a_blocks_b(self, store, generator, loader, settings, no_sleep):
        units = await _setup(store, _unit("A"), _unit("B"))
        verdict = failing(score=10, codes=("WRONG_ROOM_TYPE",), critical_violation=True)
        executor = UnitExecutor(store, generator, ScriptedJudge(verdict), loader, settings=settings, sleep=no_sleep)

        outcomes = await DependencyEnforcer(store).run_group(units, _dispatcher(executor))

        assert outcomes[0].status == UnitStatus.NEEDS_REVIEW
        assert outcomes[1].status == UnitStatus.BLOCKED
        assert outcomes[1].reason == DEPENDENCY_FAILED
        assert len(generator.calls) == 1
        b = await store.get_unit("space_bed:B")
        assert b.blocked_reason["error"] == DEPENDENCY_FAILED
        assert b.blocked_reason["a_status"] == "needs_review"
        assert b.blocked_reason["a_unit_id"] == "space_bed:A"

    @pytest.mark.asyncio
    async def test_missing_a_blocks_b(self, store, generator, loader, settings, no_sleep):
        units = await _setup(store, _unit("B"))
        executor = UnitExecutor(store, generator, ScriptedJudge(passing()), loader, settings=settings, sleep=no_sleep)

        outcomes = await DependencyEnforcer(store).run_group(units, _dispatcher(executor))

        assert outcomes[0].reason == DEPENDENCY_FAILED
        assert (await store.get_unit("space_bed:B")).blocked_reason["a_status"] == "missing"
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_locked_a_is_reused(self, store, generator, loader, settings, no_sleep):
        a = _unit("A", status=UnitStatus.APPROVED, locked_approved=True, asset_ref="old_a.png")
        units = await _setup(store, a, _unit("B"))
        executor = UnitExecutor(store, generator, ScriptedJudge(passing()), loader, settings=settings, sleep=no_sleep)

        outcomes = await DependencyEnforcer(store).run_group(units, _dispatcher(executor))

        assert [o.unit_id for o in outcomes] == ["space_bed:B"]
        assert generator.calls[0]["anchor_ref"] == "old_a.png"

    @pytest.mark.asyncio
    async def test_dependency_blocked_b_requeued(self, store, generator, loader, settings, no_sleep):
        a = _unit("A", status=UnitStatus.APPROVED, locked_approved=True, asset_ref="a.png")
        b = _unit("B", status=UnitStatus.BLOCKED, blocked_reason={"error": DEPENDENCY_FAILED})
        units = await _setup(store, a, b)
        executor = UnitExecutor(store, generator, ScriptedJudge(passing()), loader, settings=settings, sleep=no_sleep)

        outcomes = await DependencyEnforcer(store).run_group(units, _dispatcher(executor))

        assert outcomes[0].status == UnitStatus.APPROVED
        b = await store.get_unit("space_bed:B")
        assert b.blocked_reason is None
        assert b.anchor_ref == "a.png"

    @pytest.mark.asyncio
    async def test_b_waits_while_a_pending(self, store, generator, loader, settings, no_sleep):
        units = await _setup(store, _unit("A", status=UnitStatus.PENDING), _unit("B"))
        executor = UnitExecutor(store, generator, ScriptedJudge(passing()), loader, settings=settings, sleep=no_sleep)

        outcomes = await DependencyEnforcer(store).run_group(units, _dispatcher(executor))

        assert outcomes[0].skipped
        assert outcomes[0].reason == "awaiting_primary"
        assert (await store.get_unit("space_bed:B")).status == UnitStatus.QUEUED

    @pytest.mark.asyncio
    async def test_unpaired_group_runs_queued_units(self, store, generator, loader, settings, no_sleep):
        units = await _setup(store, _unit("A"))
        executor = UnitExecutor(store, generator, ScriptedJudge(passing()), loader, settings=settings, sleep=no_sleep)

        outcomes = await DependencyEnforcer(store).run_group(units, _dispatcher(executor))

        assert len(outcomes) == 1
        assert outcomes[0].status == UnitStatus.APPROVED


class TestEnsurePairs:
    @pytest.mark.asyncio
    async def test_creates_missing_slot(self, store):
        units = await _setup(store, _unit("A", "s1", status=UnitStatus.PENDING), _unit("B", "s2", status=UnitStatus.PENDING))
        created = await DependencyEnforcer(store).ensure_pairs(units)
        assert sorted((u.space_id, u.slot) for u in created) == [("s1", "B"), ("s2", "A")]
        assert len(await store.list_units("run_1", 6)) == 4

    @pytest.mark.asyncio
    async def test_excluded_space_not_paired(self, store):
        units = await _setup(store, _unit("A", "s1", status=UnitStatus.PENDING, excluded=True))
        assert await DependencyEnforcer(store).ensure_pairs(units) == []

    @pytest.mark.asyncio
    async def test_complete_pair_untouched(self, store):
        units = await _setup(store, _unit("A"), _unit("B"))
        assert await DependencyEnforcer(store).ensure_pairs(units) == []
