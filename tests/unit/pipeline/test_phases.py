# tests/unit/pipeline/test_phases.py — v1
"""Tests for pipeline/phases.py — phase table and legal transitions."""

from __future__ import annotations

import pytest

from qagate.core.errors import InvalidTransitionError
from qagate.core.models import Phase
from qagate.pipeline.phases import (
    LEGAL_PHASE_TRANSITIONS,
    PHASE_STEP,
    STEP_PHASES,
    check_row,
    phases_for,
    step_of,
    validate_transition,
)


class TestTable:
    def test_every_phase_mapped(self):
        assert set(PHASE_STEP) == set(Phase)

    def test_step_phases_belong_to_their_step(self):
        for step, phases in STEP_PHASES.items():
            for phase in (phases.pending, phases.running, phases.exit):
                if phase is not None:
                    assert step_of(phase) == step

    def test_edges_cross_exactly_one_step(self):
        for src, dst in LEGAL_PHASE_TRANSITIONS.items():
            if dst != Phase.COMPLETED:
                assert step_of(dst) == step_of(src) + 1

    def test_decision_steps_have_no_running_phase(self):
        assert phases_for(4).running is None
        assert phases_for(5).running is None

    def test_unknown_step(self):
        with pytest.raises(InvalidTransitionError):
            phases_for(9)


class TestCheckRow:
    def test_valid(self):
        check_row(Phase.OUTPUTS_REVIEW, 6)

    def test_mismatch(self):
        with pytest.raises(InvalidTransitionError, match="does not belong to step 5"):
            check_row(Phase.OUTPUTS_REVIEW, 5)


class TestValidateTransition:
    def test_within_step(self):
        assert validate_transition(Phase.OUTPUTS_PENDING, Phase.OUTPUTS_IN_PROGRESS) == 6
        assert validate_transition(Phase.OUTPUTS_REVIEW, Phase.OUTPUTS_IN_PROGRESS) == 6

    def test_legal_edge(self):
        assert validate_transition(Phase.OUTPUTS_REVIEW, Phase.PANORAMAS_PENDING) == 7

    def test_skipping_a_step(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Phase.OUTPUTS_REVIEW, Phase.MERGING_PENDING)

    def test_edge_from_non_exit_phase(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Phase.OUTPUTS_IN_PROGRESS, Phase.PANORAMAS_PENDING)

    def test_backward_rejected(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Phase.PANORAMAS_PENDING, Phase.OUTPUTS_PENDING)

    def test_failed_always_reachable(self):
        assert validate_transition(Phase.STYLE_RUNNING, Phase.FAILED) == 0

    def test_completed_is_final(self):
        with pytest.raises(InvalidTransitionError, match="completed"):
            validate_transition(Phase.COMPLETED, Phase.MERGING_REVIEW)
