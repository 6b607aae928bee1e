# src/retry/budget.py — v1
"""Retry/attempt-budget manager — turns a verdict into the next action.

Decision order for one judged attempt:
  1. verdict passed                               → approve
  2. critical violation or judge wants a human    → block_for_human
  3. unit attempts exhausted                      → block_for_human
  4. run-wide attempt ceiling reached             → block_for_human
  5. otherwise                                    → retry with guidance

Retry guidance is cumulative: the guidance of every earlier attempt of
the cycle, the current corrected instructions, then reason-code deltas.
Lines are deduplicated but never dropped, so each retry is at least as
constrained as the one before.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from qagate.config.settings import Settings
from qagate.core.models import AttemptRecord, OutputUnit, QAVerdict
from qagate.llm.retry import compute_backoff
from qagate.retry.corrections import corrections_for

logger = logging.getLogger(__name__)

ActionKind = Literal["approve", "retry", "block_for_human"]


@dataclass(frozen=True)
class BudgetAction:
    """What the executor does after a judged attempt."""

    kind: ActionKind
    guidance: str = ""
    reason: str = ""


def _merge_lines(chunks: Iterable[str | None]) -> list[str]:
    lines: list[str] = []
    for chunk in chunks:
        if not chunk:
            continue
        for line in chunk.splitlines():
            line = line.strip()
            if line and line not in lines:
                lines.append(line)
    return lines


class RetryBudgetManager:
    """Per-unit and per-run attempt budgets."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or Settings()

    @property
    def run_ceiling(self) -> int:
        return self._settings.max_total_attempts_per_run

    def next_action(
        self,
        unit: OutputUnit,
        verdict: QAVerdict,
        history: list[AttemptRecord] | None = None,
        run_attempts: int = 0,
    ) -> BudgetAction:
        """Decide the next action.

        Args:
            unit: The unit; ``attempt_count`` includes the attempt just judged.
            verdict: Verdict of that attempt.
            history: Earlier attempts of the unit's current cycle.
            run_attempts: Attempts made across the whole run, this one included.
        """
        if verdict.passed:
            return BudgetAction(kind="approve", reason="qa_passed")

        if verdict.critical_violation:
            return BudgetAction(kind="block_for_human", reason="critical_violation")
        if verdict.recommended_action == "needs_human":
            return BudgetAction(kind="block_for_human", reason="judge_requested_review")

        if unit.attempt_count >= unit.max_attempts:
            logger.info(
                "Unit %s exhausted %d/%d attempts", unit.unit_id, unit.attempt_count, unit.max_attempts,
            )
            return BudgetAction(kind="block_for_human", reason="max_attempts_reached")

        if run_attempts >= self.run_ceiling:
            logger.warning("Run %s reached the attempt ceiling (%d)", unit.run_id, self.run_ceiling)
            return BudgetAction(kind="block_for_human", reason="run_attempt_budget_exhausted")

        return BudgetAction(
            kind="retry",
            guidance=self.build_guidance(verdict, history or []),
            reason=",".join(verdict.reason_codes) or "qa_failed",
        )

    @staticmethod
    def build_guidance(verdict: QAVerdict, history: list[AttemptRecord]) -> str:
        prior = [r.correction_guidance for r in history]
        prior += [r.verdict.corrected_instructions for r in history if r.verdict is not None]
        codes = [c for r in history if r.verdict is not None for c in r.verdict.reason_codes]
        codes += verdict.reason_codes
        lines = _merge_lines([*prior, verdict.corrected_instructions, *corrections_for(codes)])
        return "\n".join(lines)

    def retry_delay_s(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1``: base * 2**(attempt-1), capped."""
        return compute_backoff(
            attempt,
            self._settings.retry_base_delay_s,
            self._settings.retry_max_delay_s,
        )
