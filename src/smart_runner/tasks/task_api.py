# src/smart_runner/tasks/task_api.py

from __future__ import annotations

"""
Run driver: the public entry point of the task engine.

One TaskRunner owns one registry, process manager, executor, callback
dispatcher and dependency scheduler. Hosts (CLI, editor integration) call
run_batch()/run(), kill_all() and is_batch_complete(), and read snapshot() to
render status.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..config import Settings, get_settings
from ..core.ports import LoggingNotifier, Notifier
from .callbacks import CallbackDispatcher
from .executor import Executor
from .processes import ABORT_NOTE, ProcessManager
from .snapshot import TaskSnapshot, build_snapshot
from .task_models import RunConfig, TaskDefinition, TaskResult, TaskStatus
from .task_scheduler import DependencyScheduler
from .task_store import TaskRegistry
from .templates import RawTask, TemplateRegistry, resolve_batch

logger = logging.getLogger(__name__)

HANDLER_ABORT_NOTE = "[Task aborted by user]"


@dataclass(frozen=True, slots=True)
class RunSummary:
    statuses: dict[str, TaskStatus]
    blocked: dict[str, list[str]] = field(default_factory=dict)
    elapsed: float = 0.0

    def count(self, status: TaskStatus) -> int:
        return sum(1 for st in self.statuses.values() if st == status)

    def ids_in(self, status: TaskStatus) -> list[str]:
        return sorted(tid for tid, st in self.statuses.items() if st == status)

    @property
    def ok(self) -> bool:
        """Everything ended success or skipped, nothing blocked."""
        if self.blocked:
            return False
        return all(st in (TaskStatus.SUCCESS, TaskStatus.SKIPPED) for st in self.statuses.values())


class TaskRunner:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        templates: TemplateRegistry | None = None,
        notifier: Notifier | None = None,
        config: RunConfig | None = None,
        poll_interval: float | None = None,
        kill_grace_seconds: float | None = None,
        default_timeout: float | None = None,
        clock=time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self.templates = templates or TemplateRegistry()
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.config = config or RunConfig(hide_skipped=self.settings.hide_skipped)

        self.registry = TaskRegistry(clock=clock)
        self.processes = ProcessManager(
            self.registry,
            kill_grace_seconds=(
                self.settings.kill_grace_seconds if kill_grace_seconds is None else kill_grace_seconds
            ),
        )
        self.executor = Executor(
            self.registry,
            self.processes,
            notifier=self.notifier,
            config=self.config,
            default_timeout=(
                self.settings.default_timeout_seconds if default_timeout is None else default_timeout
            ),
            runner=self,
        )
        self.callbacks = CallbackDispatcher(
            self.registry,
            self.templates,
            launch=self.executor.start,
            notifier=self.notifier,
        )
        self.executor.callbacks = self.callbacks
        self.scheduler = DependencyScheduler(
            self.registry,
            launch=self.executor.start,
            interval_seconds=(
                self.settings.poll_interval_seconds if poll_interval is None else poll_interval
            ),
        )

        self.batch: dict[str, TaskDefinition] = {}
        self._scheduler_task: asyncio.Task[None] | None = None
        self._started_at: float | None = None
        self._finished_at: float | None = None

    # ---- Control surface -------------------------------------------------------

    def run_batch(
        self,
        tasks: Mapping[str, RawTask],
        config: RunConfig | None = None,
    ) -> asyncio.Task[None]:
        """
        Seed a new run and start scheduling it. Must be called on the event loop.

        The registry is cleared first: task state never survives across runs.
        Returns the scheduler task (done when the run is complete, stalled or killed).
        """
        if self._scheduler_task is not None and not self._scheduler_task.done():
            logger.warning("Starting a new run while the previous one is active; killing it")
            self.kill_all()

        if config is not None:
            self.config = config
            self.executor.config = config

        # Killed jobs of the previous run may still be winding down; the new
        # generation drops whatever they write from here on.
        self.registry.clear()
        self.executor.resume()
        self.batch = resolve_batch(tasks, self.templates, notifier=self.notifier)
        self.callbacks.reset(self.batch)

        self._started_at = self.registry.now()
        self._finished_at = None
        logger.info("Running %d task(s): %s", len(self.batch), ", ".join(self.batch))

        self._scheduler_task = self.registry.run_context().run(self._seed)
        self._scheduler_task.add_done_callback(self._on_scheduler_done)
        return self._scheduler_task

    def _seed(self) -> asyncio.Task[None]:
        for task_id, task in self.batch.items():
            self.registry.initialize(task_id, task)
        return self.scheduler.start(self.batch)

    async def run(self, tasks: Mapping[str, RawTask], config: RunConfig | None = None) -> RunSummary:
        """run_batch() + wait()."""
        self.run_batch(tasks, config)
        return await self.wait()

    async def wait(self) -> RunSummary:
        """Wait until the scheduler stops and all started work has returned."""
        if self._scheduler_task is not None:
            await asyncio.shield(self._scheduler_task)
        # A function callback may start work of its own; drain until both are quiet.
        while self.executor.inflight_count() or self.callbacks.pending_count():
            await self.executor.wait_idle()
            await self.callbacks.wait_idle()
        return self.summary()

    def kill_all(self) -> list[str]:
        """
        Abort all in-flight work.

        Stops dependency polling, refuses new starts, terminates every process
        (aborted right away, SIGKILL after the grace period) and marks handler
        tasks that are still running as aborted.
        """
        self.scheduler.stop()
        self.executor.halt()
        killed = self.processes.kill_all(ABORT_NOTE)

        for task_id in self.registry.in_state(TaskStatus.RUNNING):
            if self.registry.set_aborted(task_id, HANDLER_ABORT_NOTE):
                killed.append(task_id)

        logger.info("Kill all: %d task(s) aborted", len(killed))
        return killed

    def is_batch_complete(self) -> bool:
        return self.registry.all_terminal()

    async def run_task(self, task: TaskDefinition) -> TaskResult | None:
        """Run a single task (outside of dependency scheduling)."""
        self.batch.setdefault(task.id, task)
        return await self.executor.run_task(task)

    # ---- Views -----------------------------------------------------------------

    def snapshot(self, *, hide_skipped: bool | None = None) -> list[TaskSnapshot]:
        if hide_skipped is None:
            hide_skipped = self.config.hide_skipped
        return build_snapshot(self.registry, self.batch, hide_skipped=hide_skipped)

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._finished_at if self._finished_at is not None else self.registry.now()
        return max(0.0, end - self._started_at)

    def summary(self) -> RunSummary:
        statuses = {tid: st.status for tid, st in self.registry.items()}
        return RunSummary(
            statuses=statuses,
            blocked=self.scheduler.blocked_tasks(),
            elapsed=self.elapsed(),
        )

    def _on_scheduler_done(self, task: asyncio.Task[Any]) -> None:
        if task is not self._scheduler_task:
            # Poll loop of a run that was replaced.
            return
        self._finished_at = self.registry.now()
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            logger.error("Dependency scheduler crashed", exc_info=err)
