# src/main.py — v2
"""CLI entry point — inspect and steer runs stored in the engine store.

Usage:
    qagate create-run [--run-id ID] [--scope SCOPE]
    qagate status <run_id>
    qagate units <run_id> [--step N]
    qagate pause <run_id>
    qagate resume <run_id>
    qagate restart <run_id> <step>
    qagate feedback <unit_id> {approved,rejected} [--category C] [--reason TEXT] [--score N]
    qagate decisions <run_id> [--step N]

The store comes from Settings (STORE_BACKEND / STORE_PATH); ``--db``
selects a SQLite file directly.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import get_args

from qagate.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    from qagate.core.models import FeedbackCategory

    parser = argparse.ArgumentParser(
        prog="qagate",
        description=f"qagate v{__version__} — Quality-gated execution engine",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--db", type=Path, default=None,
        help="SQLite store file (overrides STORE_BACKEND/STORE_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command")

    p_create = subparsers.add_parser("create-run", help="Create a new pipeline run")
    p_create.add_argument("--run-id", default=None, help="Run ID (generated if omitted)")
    p_create.add_argument("--scope", default="global", help="Calibration scope (default: global)")
    p_create.set_defaults(func=_cmd_create_run)

    p_status = subparsers.add_parser("status", help="Show run phase, step and counters")
    p_status.add_argument("run_id")
    p_status.set_defaults(func=_cmd_status)

    p_units = subparsers.add_parser("units", help="List units of a run")
    p_units.add_argument("run_id")
    p_units.add_argument("--step", type=int, default=None, help="Only this step")
    p_units.set_defaults(func=_cmd_units)

    p_pause = subparsers.add_parser("pause", help="Stop new dispatches for a run")
    p_pause.add_argument("run_id")
    p_pause.set_defaults(func=_cmd_pause)

    p_resume = subparsers.add_parser("resume", help="Re-enable a paused or blocked run")
    p_resume.add_argument("run_id")
    p_resume.set_defaults(func=_cmd_resume)

    p_restart = subparsers.add_parser("restart", help="Roll a run back to a step")
    p_restart.add_argument("run_id")
    p_restart.add_argument("step", type=int)
    p_restart.set_defaults(func=_cmd_restart)

    p_feedback = subparsers.add_parser("feedback", help="Record a human review decision")
    p_feedback.add_argument("unit_id")
    p_feedback.add_argument("decision", choices=["approved", "rejected"])
    p_feedback.add_argument(
        "--category", default="other", choices=list(get_args(FeedbackCategory)),
        help="Reason category (default: other)",
    )
    p_feedback.add_argument("--reason", default="", help="Free-text reason")
    p_feedback.add_argument("--score", type=int, default=None, help="Reviewer score 0-100")
    p_feedback.set_defaults(func=_cmd_feedback)

    p_decisions = subparsers.add_parser("decisions", help="Show supervisor decisions of a run")
    p_decisions.add_argument("run_id")
    p_decisions.add_argument("--step", type=int, default=None, help="Only this step")
    p_decisions.set_defaults(func=_cmd_decisions)

    return parser


async def _run(args: argparse.Namespace) -> int:
    from qagate.api.facade import QualityGateFacade
    from qagate.config.settings import load_settings

    overrides: dict[str, object] = {}
    if args.db is not None:
        overrides = {"store_backend": "sqlite", "store_path": args.db}
    facade = QualityGateFacade(load_settings(**overrides))
    try:
        return await args.func(facade, args)
    finally:
        await facade.close()


async def _cmd_create_run(facade, args: argparse.Namespace) -> int:
    run = await facade.create_run(run_id=args.run_id, scope=args.scope)
    print(run.run_id)
    return 0


async def _cmd_status(facade, args: argparse.Namespace) -> int:
    run = await facade.store.get_run(args.run_id)
    units = await facade.store.list_units(run.run_id, step_index=run.step_index)
    terminal = sum(1 for u in units if u.is_terminal)

    print(f"\nRun {run.run_id}:")
    print(f"  Phase:        {run.phase.value}")
    print(f"  Step:         {run.step_index}")
    print(f"  Status:       {run.status}{'' if run.is_enabled else ' (paused)'}")
    print(f"  Retries:      step={run.step_retries} total={run.total_retries}")
    print(f"  Units:        {terminal}/{len(units)} terminal in current step")
    if run.last_error:
        print(f"  Last error:   {run.last_error}")
    return 0


async def _cmd_units(facade, args: argparse.Namespace) -> int:
    units = await facade.store.list_units(args.run_id, step_index=args.step)
    if not units:
        print("No units.")
        return 0
    for u in units:
        flags = []
        if u.locked_approved:
            flags.append("locked")
        if u.excluded:
            flags.append("excluded")
        if u.needs_human:
            flags.append("needs_human")
        score = u.last_qa_report.score if u.last_qa_report else "-"
        print(
            f"  [{u.step_index}] {u.unit_id:<40} {u.status.value:<13} "
            f"attempts={u.attempt_count}/{u.max_attempts} score={score} {','.join(flags)}"
        )
    return 0


async def _cmd_pause(facade, args: argparse.Namespace) -> int:
    await facade.pause(args.run_id)
    print(f"Run {args.run_id} paused")
    return 0


async def _cmd_resume(facade, args: argparse.Namespace) -> int:
    run = await facade.resume(args.run_id)
    print(f"Run {run.run_id} resumed ({run.status})")
    return 0


async def _cmd_restart(facade, args: argparse.Namespace) -> int:
    run = await facade.restart_step(args.run_id, args.step)
    print(f"Run {run.run_id} restarted at step {run.step_index} ({run.phase.value})")
    return 0


async def _cmd_feedback(facade, args: argparse.Namespace) -> int:
    result = await facade.record_human_feedback(
        args.unit_id, args.decision, args.category, args.reason, args.score,
    )
    print(f"Recorded {args.decision} for {args.unit_id}: outcome={result.outcome}")
    if result.rule_id:
        print(f"  Policy rule {result.rule_id} ({result.rule_status})")
    return 0


async def _cmd_decisions(facade, args: argparse.Namespace) -> int:
    decisions = await facade.store.list_decisions(args.run_id, step_index=args.step)
    if not decisions:
        print("No supervisor decisions.")
        return 0
    for d in decisions:
        consistency = f"{d.audit.consistency_score:.2f}" if d.audit else "-"
        print(
            f"  {d.created_at:%Y-%m-%d %H:%M:%S} step={d.step_index} job={d.job_id} "
            f"{d.decision:<8} consistency={consistency} budget={d.retry_budget_remaining} {d.reason}"
        )
    return 0


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage (text format on stderr)."""
    from qagate.logging.logger import setup_logging

    setup_logging(level="DEBUG" if verbose else "WARNING", log_format="text", stream=sys.stderr)
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
