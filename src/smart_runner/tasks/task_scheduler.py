# src/smart_runner/tasks/task_scheduler.py

from __future__ import annotations

"""
Dependency scheduler.

Seeding happens in three passes:
- `when` gating: a false predicate skips the task before anything runs,
- classification: pending tasks with dependencies become waiting,
- dispatch: every task still pending starts right away (no concurrency cap).

Then a small polling loop promotes waiting tasks whose dependencies are all
success/skipped. Besides the fixed interval, the loop wakes up as soon as any
task changes status, so promotion does not have to wait for the next tick.

A waiting task whose dependency failed or was aborted never runs; it stays
waiting. The loop reports such tasks once and stops when nothing else can
change anymore.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from .task_models import (
    DEPENDENCY_BLOCKING,
    DEPENDENCY_SATISFIED,
    TERMINAL_STATUSES,
    TaskDefinition,
    TaskStatus,
)
from .task_store import TaskRegistry

logger = logging.getLogger(__name__)

Launcher = Callable[[TaskDefinition], Any]


class DependencyScheduler:
    def __init__(
        self,
        registry: TaskRegistry,
        *,
        launch: Launcher,
        interval_seconds: float = 0.5,
    ) -> None:
        self._registry = registry
        self._launch = launch
        self._interval = max(0.01, float(interval_seconds))
        self._definitions: Mapping[str, TaskDefinition] = {}
        self._wake = asyncio.Event()
        self._stopped = False
        self._poll_task: asyncio.Task[None] | None = None
        self._reported_blocked: set[str] = set()
        registry.add_listener(self._on_status_change)

    # ---- Seeding ---------------------------------------------------------------

    def apply_conditions(self, tasks: Mapping[str, TaskDefinition]) -> list[str]:
        """Pass 1: evaluate each `when` once; false (or an exception) skips the task."""
        skipped = []
        for task_id, task in tasks.items():
            if task.when is None:
                continue
            try:
                should_run = bool(task.when())
            except Exception:
                logger.exception("Task %s: 'when' condition raised; skipping task", task_id)
                should_run = False

            if not should_run:
                if self._registry.force_state(task_id, TaskStatus.SKIPPED):
                    skipped.append(task_id)
                    logger.debug("Task %s skipped due to 'when' condition", task_id)
        return skipped

    def mark_waiting(self) -> list[str]:
        """Pass 2: pending tasks with dependencies become waiting."""
        waiting = []
        for task_id, state in self._registry.items():
            if state.status == TaskStatus.PENDING and state.depends_on:
                self._registry.force_state(task_id, TaskStatus.WAITING)
                waiting.append(task_id)
                logger.debug("Task %s waiting for: %s", task_id, ", ".join(state.depends_on))
        return waiting

    def run_ready(self, tasks: Mapping[str, TaskDefinition]) -> list[str]:
        """Pass 3: start every task that is still pending."""
        started = []
        for task_id, task in tasks.items():
            if self._registry.is_state(task_id, TaskStatus.PENDING):
                self._launch(task)
                started.append(task_id)
        return started

    def start(self, tasks: Mapping[str, TaskDefinition]) -> asyncio.Task[None]:
        """Run the three seeding passes, then start the polling loop."""
        if self._poll_task is not None and not self._poll_task.done():
            # A stopped loop may not have observed the stop yet.
            self._poll_task.cancel()

        self._definitions = tasks
        self._stopped = False
        self._reported_blocked.clear()
        self._wake.clear()

        self.apply_conditions(tasks)
        self.mark_waiting()
        self.run_ready(tasks)

        self._poll_task = asyncio.create_task(self._poll_loop(), name="smart-runner:scheduler")
        return self._poll_task

    # ---- Polling ---------------------------------------------------------------

    def stop(self) -> None:
        """Tear the polling loop down (kill_all, new run)."""
        self._stopped = True
        self._wake.set()

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _on_status_change(self, task_id: str, old: TaskStatus | None, new: TaskStatus) -> None:
        if new in TERMINAL_STATUSES:
            self._wake.set()

    async def _poll_loop(self) -> None:
        logger.debug("Dependency polling started (interval=%.2fs)", self._interval)
        while not self._stopped:
            self.promote_ready()

            if self._registry.all_terminal():
                logger.debug("All tasks terminal; dependency polling stopped")
                break

            blocked = self.blocked_tasks()
            self._report_blocked(blocked)
            if blocked and self._is_stalled():
                logger.warning(
                    "Stopping: %d task(s) can never run: %s",
                    len(blocked),
                    ", ".join(sorted(blocked)),
                )
                break

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

        logger.debug("Dependency polling finished (stopped=%s)", self._stopped)

    def promote_ready(self) -> list[str]:
        """Start every waiting task whose dependencies are all success/skipped."""
        started = []
        for task_id, state in self._registry.items():
            if state.status != TaskStatus.WAITING:
                continue
            if not self.dependencies_satisfied(state.depends_on):
                continue

            task = self._definitions.get(task_id)
            if task is None:
                logger.error("Task %s is waiting but has no definition", task_id)
                continue
            logger.debug("Task %s: dependencies satisfied", task_id)
            self._launch(task)
            started.append(task_id)
        return started

    def dependencies_satisfied(self, dependencies: tuple[str, ...]) -> bool:
        for dep_id in dependencies:
            if self._registry.status_of(dep_id) not in DEPENDENCY_SATISFIED:
                return False
        return True

    # ---- Blocked diagnostics ---------------------------------------------------

    def _is_stalled(self) -> bool:
        """Nothing pending or running: waiting tasks cannot be unblocked anymore."""
        for _, state in self._registry.items():
            if state.status in (TaskStatus.PENDING, TaskStatus.RUNNING):
                return False
        return True

    def blocked_tasks(self) -> dict[str, list[str]]:
        """
        Waiting tasks that can never start, mapped to the dependencies holding them.

        A failed/aborted dependency blocks immediately. Unknown or still-waiting
        dependencies (cycles) only count once the run has stalled.
        """
        stalled = self._is_stalled()
        out: dict[str, list[str]] = {}
        for task_id, state in self._registry.items():
            if state.status != TaskStatus.WAITING:
                continue
            holding = []
            for dep_id in state.depends_on:
                dep_status = self._registry.status_of(dep_id)
                if dep_status in DEPENDENCY_BLOCKING:
                    holding.append(dep_id)
                elif stalled and dep_status not in DEPENDENCY_SATISFIED:
                    holding.append(dep_id)
            if holding:
                out[task_id] = holding
        return out

    def _report_blocked(self, blocked: dict[str, list[str]]) -> None:
        for task_id, deps in blocked.items():
            if task_id in self._reported_blocked:
                continue
            self._reported_blocked.add(task_id)
            details = ", ".join(f"{d} ({self._registry.status_of(d) or 'unknown'})" for d in deps)
            logger.warning("Task %s will not run; blocked by %s", task_id, details)
