# src/core/errors.py — v1
"""Exception taxonomy of the engine.

Only ``StorageError`` is fatal: a status transition that cannot be
persisted aborts the in-flight operation. Every other error is routed
into a unit or run state by the component that catches it.
"""

from __future__ import annotations


class QAGateError(Exception):
    """Base class for engine errors."""


class StorageError(QAGateError):
    """The store could not persist or read a record."""


class RecordNotFoundError(StorageError):
    """A run or unit id does not exist."""


class StatusConflictError(QAGateError):
    """A compare-and-set lost the race: the stored value differed from the expected prior."""

    def __init__(self, key: str, expected: object, actual: object):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"{key}: expected {expected!r}, found {actual!r}")


class TerminalUnitError(QAGateError):
    """Attempted mutation of a locked-approved unit."""

    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"Unit {unit_id} is locked-approved and cannot be modified")


class AttemptConflictError(QAGateError):
    """An attempt slot was already reserved or written."""

    def __init__(self, unit_id: str, attempt_index: int):
        self.unit_id = unit_id
        self.attempt_index = attempt_index
        super().__init__(f"Attempt {attempt_index} of unit {unit_id} already exists")


class InvalidTransitionError(QAGateError):
    """A phase change does not land on a legal (phase, step) pair."""


class DependencyError(QAGateError):
    """A dependent unit was dispatched without its grounding anchor."""


class RunPausedError(QAGateError):
    """Dispatch was requested while the run is disabled."""


class RunCeilingError(QAGateError):
    """The run-wide attempt ceiling leaves no slot for another attempt."""

    def __init__(self, run_id: str, ceiling: int):
        self.run_id = run_id
        self.ceiling = ceiling
        super().__init__(f"Run {run_id} reached its ceiling of {ceiling} attempts")
