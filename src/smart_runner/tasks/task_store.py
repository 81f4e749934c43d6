# src/smart_runner/tasks/task_store.py

from __future__ import annotations

"""
In-memory task registry.

Holds exactly one TaskState per task id for the current run. All writes go
through this class so the invariants live in one place:

- re-initializing an id keeps its callback lineage and never moves a task that
  already started (or finished) back to pending;
- aborted is sticky: no later write may change the status of an aborted task
  (output may still be appended);
- terminal writes stamp end_time;
- clear() starts a new run generation. Work started under an earlier
  generation (see run_context()) can no longer write into the new run.

Not thread-safe: every call is expected to happen on the event loop thread.
"""

import contextvars
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import replace

from .task_models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TaskDefinition,
    TaskState,
    TaskStatus,
)

logger = logging.getLogger(__name__)

StatusListener = Callable[[str, "TaskStatus | None", TaskStatus], None]

# (registry, generation) the current asyncio task was started under.
_RUN_BINDING: contextvars.ContextVar[tuple["TaskRegistry", int] | None] = contextvars.ContextVar(
    "smart_runner_run_binding", default=None
)


class TaskRegistry:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._tasks: dict[str, TaskState] = {}
        self._listeners: list[StatusListener] = []
        # Lineage announced before the task state exists (mark_callback on an unknown id).
        self._pending_lineage: dict[str, str | None] = {}
        self._clock = clock
        self._generation = 0

    # ---- Introspection ---------------------------------------------------------

    def now(self) -> float:
        return self._clock()

    @property
    def generation(self) -> int:
        return self._generation

    def run_context(self) -> contextvars.Context:
        """
        Copy of the current context bound to this run.

        Asyncio tasks created in it (and the tasks they create) write to this run
        only: once clear() moved on, their writes are dropped.
        """
        ctx = contextvars.copy_context()
        ctx.run(_RUN_BINDING.set, (self, self._generation))
        return ctx

    def is_stale(self) -> bool:
        """True when the calling code belongs to a run that clear() has already ended."""
        binding = _RUN_BINDING.get()
        return binding is not None and binding[0] is self and binding[1] != self._generation

    def _refuse_stale(self, task_id: str, action: str) -> bool:
        if not self.is_stale():
            return False
        logger.debug("Task %s: dropped %s from an earlier run", task_id, action)
        return True

    def get(self, task_id: str) -> TaskState | None:
        return self._tasks.get(task_id)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def ids(self) -> list[str]:
        return list(self._tasks)

    def items(self) -> Iterator[tuple[str, TaskState]]:
        # Copy so callers may mutate the registry while iterating.
        return iter(list(self._tasks.items()))

    def status_of(self, task_id: str) -> TaskStatus | None:
        state = self._tasks.get(task_id)
        return None if state is None else state.status

    def is_state(self, task_id: str, status: TaskStatus) -> bool:
        state = self._tasks.get(task_id)
        return state is not None and state.status == status

    def in_state(self, status: TaskStatus) -> list[str]:
        return [tid for tid, st in self._tasks.items() if st.status == status]

    def all_terminal(self) -> bool:
        """True iff no task is pending, waiting or running."""
        return not any(st.status in ACTIVE_STATUSES for st in self._tasks.values())

    def snapshot(self) -> dict[str, TaskState]:
        """Point-in-time copy of every TaskState (safe to hand to a renderer)."""
        return {tid: replace(st) for tid, st in self._tasks.items()}

    # ---- Listeners -------------------------------------------------------------

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def _emit(self, task_id: str, old: TaskStatus | None, new: TaskStatus) -> None:
        logger.debug("Task %s: %s -> %s", task_id, old.value if old else "-", new.value)
        for listener in list(self._listeners):
            try:
                listener(task_id, old, new)
            except Exception:
                logger.exception("Status listener failed task_id=%s", task_id)

    # ---- Writes ----------------------------------------------------------------

    def initialize(
        self,
        task_id: str,
        definition: TaskDefinition,
        *,
        is_callback: bool = False,
        parent_task: str | None = None,
    ) -> TaskState:
        """Create the task as pending, or refresh an existing one (lineage preserved)."""
        lineage_known = task_id in self._pending_lineage
        announced_parent = self._pending_lineage.pop(task_id, None)
        if lineage_known:
            is_callback = True
            parent_task = parent_task or announced_parent

        existing = self._tasks.get(task_id)
        if existing is None:
            state = TaskState(
                depends_on=tuple(definition.depends_on),
                is_callback=is_callback,
                parent_task=parent_task if is_callback and parent_task != task_id else None,
            )
            self._tasks[task_id] = state
            self._emit(task_id, None, state.status)
            return state

        existing.is_callback = existing.is_callback or is_callback
        if existing.parent_task is None and is_callback and parent_task != task_id:
            existing.parent_task = parent_task
        existing.depends_on = tuple(definition.depends_on)

        if existing.status not in (TaskStatus.PENDING, TaskStatus.WAITING):
            logger.debug(
                "Task %s already %s; not resetting to pending", task_id, existing.status.value
            )
            return existing

        old = existing.status
        existing.status = TaskStatus.PENDING
        existing.output = ""
        existing.start_time = None
        existing.end_time = None
        if old != TaskStatus.PENDING:
            self._emit(task_id, old, TaskStatus.PENDING)
        return existing

    def mark_callback(self, task_id: str, parent_task: str | None) -> bool:
        """
        Tag a task as a callback of `parent_task`.

        Idempotent: the first parent that reached the task is kept. For an id with
        no state yet, the lineage is remembered and applied by initialize().
        """
        if self._refuse_stale(task_id, "callback lineage"):
            return False
        state = self._tasks.get(task_id)
        if state is None:
            self._pending_lineage.setdefault(task_id, parent_task)
            return False

        if state.is_callback and state.parent_task is not None:
            return True

        state.is_callback = True
        if parent_task != task_id:
            state.parent_task = parent_task
        return True

    def set_running(self, task_id: str) -> bool:
        """pending|waiting -> running. Returns False (and changes nothing) otherwise."""
        if self._refuse_stale(task_id, "start"):
            return False
        state = self._tasks.get(task_id)
        if state is None or state.status not in (TaskStatus.PENDING, TaskStatus.WAITING):
            return False

        old = state.status
        state.status = TaskStatus.RUNNING
        state.start_time = self.now()
        state.end_time = None
        self._emit(task_id, old, TaskStatus.RUNNING)
        return True

    def safe_set_state(self, task_id: str, new_status: TaskStatus) -> bool:
        """
        Guarded transition used for every completion write.

        Refuses to touch a task that is already terminal (in particular aborted),
        so a process that exits after kill_all() cannot resurrect its task.
        """
        if self._refuse_stale(task_id, f"{new_status.value} write"):
            return False
        state = self._tasks.get(task_id)
        if state is None or state.status in TERMINAL_STATUSES:
            return False

        old = state.status
        state.status = new_status
        if new_status in TERMINAL_STATUSES and state.end_time is None:
            state.end_time = self.now()
        if old != new_status:
            self._emit(task_id, old, new_status)
        return True

    def force_state(self, task_id: str, new_status: TaskStatus) -> bool:
        """
        Scheduler-only write used for seeding (pending -> skipped / waiting).

        Still honours the aborted invariant.
        """
        state = self._tasks.get(task_id)
        if state is None or state.status == TaskStatus.ABORTED:
            return False

        old = state.status
        state.status = new_status
        if new_status in TERMINAL_STATUSES and state.end_time is None:
            state.end_time = self.now()
        if old != new_status:
            self._emit(task_id, old, new_status)
        return True

    def append_output(self, task_id: str, chunk: str) -> None:
        if chunk and self._refuse_stale(task_id, "output"):
            return
        state = self._tasks.get(task_id)
        if state is not None and chunk:
            state.output += chunk

    def set_aborted(self, task_id: str, note: str | None = None) -> bool:
        """Flip a task to aborted right away (kill path). Returns False if already aborted."""
        state = self._tasks.get(task_id)
        if state is None or state.status == TaskStatus.ABORTED:
            return False

        old = state.status
        state.status = TaskStatus.ABORTED
        state.end_time = self.now()
        if note:
            state.output += "\n" + note
        self._emit(task_id, old, TaskStatus.ABORTED)
        return True

    def clear(self) -> None:
        """Drop every task (start of a new run)."""
        self._tasks.clear()
        self._pending_lineage.clear()
        self._generation += 1
