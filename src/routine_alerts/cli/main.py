# src/routine_alerts/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs one of:
- run:   the periodic weather alert scheduler (until SIGINT/SIGTERM),
- sweep: a single sweep, printing its report,
- small task/device management commands for local use.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import time
from datetime import datetime

from ..alerts.alert_scheduler import AlertScheduler, SweepReport
from ..config import get_settings
from ..core.errors import SweepFailed
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..tasks.task_api import register_device, reschedule_task, schedule_outdoor_task
from ..tasks.task_models import TaskCategory
from .bootstrap import create_app_state

logger = logging.getLogger(__name__)


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def _require_scheduler(state: AppState) -> AlertScheduler:
    if state.scheduler is None:
        raise SystemExit("Weather alerts are disabled: set ROUTINE_OPENWEATHER_API_KEY in your .env.")
    return state.scheduler


def _print_report(report: SweepReport | None) -> None:
    if report is None:
        print("Sweep skipped (another sweep is running).")
        return
    print(f"Sweep: {report.candidates} candidate(s) in {report.duration_seconds:.2f}s")
    for task_id, result in sorted(report.results.items()):
        extra = f" ({result.error_kind})" if result.error_kind else ""
        print(f"  task {task_id}: {result.outcome.value}{extra}")


async def _run_forever(scheduler: AlertScheduler, interval_seconds: float) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Some platforms do not support loop signal handlers.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, scheduler.stop)

    await scheduler.run_forever(interval_seconds=interval_seconds)


def cmd_run(state: AppState, args: argparse.Namespace) -> int:
    scheduler = _require_scheduler(state)
    period = state.settings.sweep_period_seconds
    logger.info("Weather alert scheduler running every %.0f min. Press Ctrl+C to stop.", period / 60)
    try:
        asyncio.run(_run_forever(scheduler, period))
    except KeyboardInterrupt:
        pass
    return 0


def cmd_sweep(state: AppState, args: argparse.Namespace) -> int:
    scheduler = _require_scheduler(state)
    try:
        report = asyncio.run(scheduler.run_sweep())
    except SweepFailed as e:
        print(f"Sweep failed: {e}", file=sys.stderr)
        return 1
    _print_report(report)
    return 0


def cmd_add_task(state: AppState, args: argparse.Namespace) -> int:
    if args.category == TaskCategory.OUTDOOR.value:
        task_id = schedule_outdoor_task(
            state.task_store,
            user_id=args.user,
            title=args.title,
            due_in_hours=args.due_in_hours,
            location=args.location,
        )
    else:
        task_id = state.task_store.add_task(
            user_id=args.user,
            title=args.title,
            category=args.category,
            due_at=time.time() + args.due_in_hours * 3600.0,
            location=args.location,
        )
    print(f"Task {task_id} added.")
    return 0


def cmd_list_tasks(state: AppState, args: argparse.Namespace) -> int:
    tasks = state.task_store.list_tasks_for_user(args.user, include_completed=args.all)
    if not tasks:
        print("No tasks.")
        return 0
    for t in tasks:
        done = "x" if t.is_completed else " "
        alerted = " [alerted]" if t.has_valid_marker else ""
        print(
            f"[{done}] {t.id}: {t.title} ({t.category.value}) due {_fmt_ts(t.due_at)}"
            f" @ {t.location or '-'}{alerted}"
        )
    return 0


def cmd_complete(state: AppState, args: argparse.Namespace) -> int:
    if not state.task_store.complete_task(args.task_id):
        print(f"Task {args.task_id} not found.", file=sys.stderr)
        return 1
    print(f"Task {args.task_id} completed.")
    return 0


def cmd_reschedule(state: AppState, args: argparse.Namespace) -> int:
    task = reschedule_task(state.task_store, args.task_id, due_at=time.time() + args.due_in_hours * 3600.0)
    if task is None:
        print(f"Task {args.task_id} not found.", file=sys.stderr)
        return 1
    print(f"Task {task.id} now due {_fmt_ts(task.due_at)}.")
    return 0


def cmd_register_device(state: AppState, args: argparse.Namespace) -> int:
    register_device(state.task_store, user_id=args.user, token=args.token)
    print(f"Device registered for {args.user}.")
    return 0


def cmd_set_location(state: AppState, args: argparse.Namespace) -> int:
    state.task_store.set_user_default_location(args.user, args.location)
    print(f"Default location for {args.user}: {args.location}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="routine-alerts", description="Weather alerts for outdoor tasks.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="run the periodic weather alert scheduler")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("sweep", help="run a single sweep and print the report")
    p.set_defaults(func=cmd_sweep)

    p = sub.add_parser("add-task", help="add a task")
    p.add_argument("--user", required=True)
    p.add_argument("--title", required=True)
    p.add_argument("--due-in-hours", type=float, required=True)
    p.add_argument("--location")
    p.add_argument("--category", default=TaskCategory.OUTDOOR.value, choices=[c.value for c in TaskCategory])
    p.set_defaults(func=cmd_add_task)

    p = sub.add_parser("list-tasks", help="list a user's tasks")
    p.add_argument("--user", required=True)
    p.add_argument("--all", action="store_true", help="include completed tasks")
    p.set_defaults(func=cmd_list_tasks)

    p = sub.add_parser("complete-task", help="mark a task completed")
    p.add_argument("task_id", type=int)
    p.set_defaults(func=cmd_complete)

    p = sub.add_parser("reschedule", help="move a task's due time")
    p.add_argument("task_id", type=int)
    p.add_argument("--due-in-hours", type=float, required=True)
    p.set_defaults(func=cmd_reschedule)

    p = sub.add_parser("register-device", help="register a push token for a user")
    p.add_argument("--user", required=True)
    p.add_argument("--token", required=True)
    p.set_defaults(func=cmd_register_device)

    p = sub.add_parser("set-location", help="set a user's default location")
    p.add_argument("--user", required=True)
    p.add_argument("--location", required=True)
    p.set_defaults(func=cmd_set_location)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.debug("Starting %s command=%s", settings.app_name, args.command)

    state = create_app_state(settings=settings)
    try:
        return int(args.func(state, args))
    finally:
        state.task_store.close()


if __name__ == "__main__":
    sys.exit(main())
