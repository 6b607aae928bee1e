# src/pipeline/phases.py — v1
"""Fixed phase ↔ step table and the legal cross-step transitions.

Every (phase, step_index) pair a run may hold is a row of PHASE_STEP.
Cross-step moves are only the LEGAL_PHASE_TRANSITIONS edges (a step's
exit phase to the next step's pending phase); moves between two phases
of the same step are always legal. Rollback is the only backward move
and always lands on a pending phase.
"""

from __future__ import annotations

from dataclasses import dataclass

from qagate.core.errors import InvalidTransitionError
from qagate.core.models import Phase

PHASE_STEP: dict[Phase, int] = {
    # 0: analysis
    Phase.UPLOAD: 0,
    Phase.SPACE_ANALYSIS_PENDING: 0,
    Phase.SPACE_ANALYSIS_RUNNING: 0,
    Phase.SPACE_ANALYSIS_COMPLETE: 0,
    Phase.FAILED: 0,
    # 1: top-down 3D
    Phase.TOP_DOWN_3D_PENDING: 1,
    Phase.TOP_DOWN_3D_RUNNING: 1,
    Phase.TOP_DOWN_3D_REVIEW: 1,
    # 2: style
    Phase.STYLE_PENDING: 2,
    Phase.STYLE_RUNNING: 2,
    Phase.STYLE_REVIEW: 2,
    # 3: space detection
    Phase.DETECT_SPACES_PENDING: 3,
    Phase.DETECTING_SPACES: 3,
    Phase.SPACES_DETECTED: 3,
    # 4: camera intent (decision only)
    Phase.CAMERA_INTENT_PENDING: 4,
    Phase.CAMERA_INTENT_CONFIRMED: 4,
    # 5: prompt templates (decision only)
    Phase.PROMPT_TEMPLATES_PENDING: 5,
    Phase.PROMPT_TEMPLATES_CONFIRMED: 5,
    # 6: per-space outputs
    Phase.OUTPUTS_PENDING: 6,
    Phase.OUTPUTS_IN_PROGRESS: 6,
    Phase.OUTPUTS_REVIEW: 6,
    # 7: panoramas
    Phase.PANORAMAS_PENDING: 7,
    Phase.PANORAMAS_IN_PROGRESS: 7,
    Phase.PANORAMAS_REVIEW: 7,
    # 8: merge
    Phase.MERGING_PENDING: 8,
    Phase.MERGING_IN_PROGRESS: 8,
    Phase.MERGING_REVIEW: 8,
    Phase.COMPLETED: 8,
}

LEGAL_PHASE_TRANSITIONS: dict[Phase, Phase] = {
    Phase.SPACE_ANALYSIS_COMPLETE: Phase.TOP_DOWN_3D_PENDING,
    Phase.TOP_DOWN_3D_REVIEW: Phase.STYLE_PENDING,
    Phase.STYLE_REVIEW: Phase.DETECT_SPACES_PENDING,
    Phase.SPACES_DETECTED: Phase.CAMERA_INTENT_PENDING,
    Phase.CAMERA_INTENT_CONFIRMED: Phase.PROMPT_TEMPLATES_PENDING,
    Phase.PROMPT_TEMPLATES_CONFIRMED: Phase.OUTPUTS_PENDING,
    Phase.OUTPUTS_REVIEW: Phase.PANORAMAS_PENDING,
    Phase.PANORAMAS_REVIEW: Phase.MERGING_PENDING,
    Phase.MERGING_REVIEW: Phase.COMPLETED,
}

FIRST_STEP = 0
LAST_STEP = 8


@dataclass(frozen=True)
class StepPhases:
    """The pending / running / exit phases of one step.

    Decision-only steps have no running phase.
    """

    pending: Phase
    running: Phase | None
    exit: Phase


STEP_PHASES: dict[int, StepPhases] = {
    0: StepPhases(Phase.SPACE_ANALYSIS_PENDING, Phase.SPACE_ANALYSIS_RUNNING, Phase.SPACE_ANALYSIS_COMPLETE),
    1: StepPhases(Phase.TOP_DOWN_3D_PENDING, Phase.TOP_DOWN_3D_RUNNING, Phase.TOP_DOWN_3D_REVIEW),
    2: StepPhases(Phase.STYLE_PENDING, Phase.STYLE_RUNNING, Phase.STYLE_REVIEW),
    3: StepPhases(Phase.DETECT_SPACES_PENDING, Phase.DETECTING_SPACES, Phase.SPACES_DETECTED),
    4: StepPhases(Phase.CAMERA_INTENT_PENDING, None, Phase.CAMERA_INTENT_CONFIRMED),
    5: StepPhases(Phase.PROMPT_TEMPLATES_PENDING, None, Phase.PROMPT_TEMPLATES_CONFIRMED),
    6: StepPhases(Phase.OUTPUTS_PENDING, Phase.OUTPUTS_IN_PROGRESS, Phase.OUTPUTS_REVIEW),
    7: StepPhases(Phase.PANORAMAS_PENDING, Phase.PANORAMAS_IN_PROGRESS, Phase.PANORAMAS_REVIEW),
    8: StepPhases(Phase.MERGING_PENDING, Phase.MERGING_IN_PROGRESS, Phase.MERGING_REVIEW),
}

# Steps whose units come in A/B pairs per space.
PAIRED_STEPS: frozenset[int] = frozenset({6})


def step_of(phase: Phase) -> int:
    return PHASE_STEP[phase]


def phases_for(step_index: int) -> StepPhases:
    try:
        return STEP_PHASES[step_index]
    except KeyError:
        raise InvalidTransitionError(f"Unknown step {step_index}") from None


def check_row(phase: Phase, step_index: int) -> None:
    """Raise unless (phase, step_index) is a row of the phase table."""
    if PHASE_STEP.get(phase) != step_index:
        raise InvalidTransitionError(
            f"Phase {phase.value} does not belong to step {step_index} "
            f"(expected step {PHASE_STEP.get(phase)})"
        )


def validate_transition(current: Phase, new: Phase) -> int:
    """Check a forward move and return the step index it lands on."""
    if current == Phase.COMPLETED:
        raise InvalidTransitionError("Run is completed")
    if new == Phase.FAILED or PHASE_STEP[current] == PHASE_STEP[new]:
        return PHASE_STEP[new]
    if LEGAL_PHASE_TRANSITIONS.get(current) == new:
        return PHASE_STEP[new]
    raise InvalidTransitionError(f"Illegal transition {current.value} → {new.value}")
