# tests/unit/api/test_models.py — v1
"""Tests for api/models.py."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from qagate.api.models import UnitSpec, UnitStatusView
from qagate.core.models import AttemptRecord, OutputUnit


def test_unit_spec_defaults():
    spec = UnitSpec(space_id="space_kitchen")
    assert spec.slot == "A"
    assert spec.max_attempts is None
    assert spec.reference_refs == []


def test_unit_spec_rejects_zero_attempts():
    with pytest.raises(ValidationError):
        UnitSpec(space_id="s", max_attempts=0)


def test_latest_attempt():
    unit = OutputUnit(unit_id="u1", run_id="r1", step_index=6, space_id="s")
    assert UnitStatusView(unit=unit).latest_attempt is None
    records = [
        AttemptRecord(unit_id="u1", run_id="r1", attempt_index=i, prompt="p", action="retry")
        for i in (1, 2)
    ]
    assert UnitStatusView(unit=unit, attempts=records).latest_attempt.attempt_index == 2
