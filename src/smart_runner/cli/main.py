# src/smart_runner/cli/main.py

"""
CLI entrypoint.

Initializes logging, loads the task file, then either runs the batch (with a
live status view) or lists what would run. Ctrl+C / SIGTERM abort every task.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any

from ..cli.bootstrap import TaskFile, create_runner, load_task_file
from ..cli.render import ConsoleRenderer
from ..config import Settings, get_settings
from ..errors import SmartRunnerError
from ..logging_setup import setup_logging
from ..tasks.task_api import RunSummary, TaskRunner
from ..tasks.templates import resolve_batch

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="smart-runner", description="Run a graph of tasks.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run the tasks of a task file")
    run.add_argument("task_file", nargs="?", default=settings.task_file_name)
    run.add_argument("--only", nargs="+", metavar="ID", help="run only these task ids")
    run.add_argument("--message-file", help="file that receives a generated commit message")
    run.add_argument("--no-live", action="store_true", help="print status changes instead of redrawing")

    ls = sub.add_parser("list", help="list resolved tasks and available predefined tasks")
    ls.add_argument("task_file", nargs="?", default=settings.task_file_name)
    return parser


def select_tasks(tasks: dict[str, Any], only: Sequence[str] | None) -> dict[str, Any]:
    """Restrict the batch to `only`. Ids not in the file enable the predefined task."""
    if not only:
        return tasks
    return {task_id: tasks.get(task_id, True) for task_id in only}


async def _run_async(
    runner: TaskRunner,
    tasks: dict[str, Any],
    renderer: ConsoleRenderer,
    refresh_interval: float,
) -> tuple[RunSummary, bool]:
    loop = asyncio.get_running_loop()
    interrupted = False

    def _on_signal(signum: int) -> None:
        nonlocal interrupted
        logger.info("Signal %s received, aborting all tasks...", signum)
        interrupted = True
        runner.kill_all()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _on_signal, signum)
        except (NotImplementedError, RuntimeError):
            # No signal handlers on this platform/loop; Ctrl+C raises KeyboardInterrupt instead.
            pass

    runner.run_batch(tasks)
    waiter = asyncio.create_task(runner.wait())
    try:
        while not waiter.done():
            renderer.render(runner.snapshot(), runner.elapsed())
            await asyncio.wait({waiter}, timeout=refresh_interval)
        summary = waiter.result()
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                pass

    renderer.finish(runner.snapshot(), summary.elapsed, summary.blocked)
    return summary, interrupted


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    task_file = load_task_file(args.task_file)
    if args.message_file:
        task_file.options["message_file"] = args.message_file

    runner = create_runner(settings=settings, task_file=task_file)
    tasks = select_tasks(task_file.tasks, args.only)
    renderer = ConsoleRenderer(live=False if args.no_live else None)

    summary, interrupted = asyncio.run(
        _run_async(runner, tasks, renderer, settings.refresh_interval_seconds)
    )
    logger.info("Run finished in %.2fs: %s", summary.elapsed, dict(summary.statuses))

    if interrupted:
        return EXIT_INTERRUPTED
    return EXIT_OK if summary.ok else EXIT_FAILED


def cmd_list(args: argparse.Namespace, settings: Settings, out=None) -> int:
    out = out or sys.stdout
    task_file: TaskFile = load_task_file(args.task_file)
    runner = create_runner(settings=settings, task_file=task_file)
    batch = resolve_batch(task_file.tasks, runner.templates, notifier=runner.notifier)

    out.write("Tasks:\n")
    for task_id, task in batch.items():
        line = f"  {task_id}"
        if task.label and task.label != task_id:
            line += f" ({task.label})"
        if task.depends_on:
            line += f" <- {', '.join(task.depends_on)}"
        out.write(line + "\n")

    out.write("Predefined:\n")
    for task_id in runner.templates.ids():
        out.write(f"  {task_id}\n")
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    settings = get_settings()

    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    # Keep the console for the status view unless debugging.
    if not settings.debug:
        console_level = max(console_level, logging.WARNING)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    args = build_parser(settings).parse_args(argv)
    logger.debug("Starting %s (%s)", settings.app_name, args.command)

    try:
        if args.command == "run":
            return cmd_run(args, settings)
        return cmd_list(args, settings)
    except SmartRunnerError as e:
        logger.error("%s", e)
        print(f"smart-runner: {e}", file=sys.stderr)
        return EXIT_USAGE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
