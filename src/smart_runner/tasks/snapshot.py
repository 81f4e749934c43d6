# src/smart_runner/tasks/snapshot.py

from __future__ import annotations

"""
Status snapshot for renderers.

Ordering is a display concern only: callback tasks are listed right after the
task that triggered them, indented by their depth in the lineage tree.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum

from .task_models import TaskDefinition, TaskState, TaskStatus
from .task_store import TaskRegistry


class RunHeadline(StrEnum):
    RUNNING = "running"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class TaskSnapshot:
    task_id: str
    state: TaskState
    definition: TaskDefinition | None
    depth: int
    elapsed: float

    @property
    def status(self) -> TaskStatus:
        return self.state.status

    @property
    def label(self) -> str:
        if self.definition is not None:
            return self.definition.display_label
        return self.task_id

    @property
    def icon(self) -> str:
        return self.definition.icon if self.definition is not None else ""


def lineage(states: Mapping[str, TaskState], task_id: str) -> list[str]:
    """Root-first chain of ids ending with `task_id` (cycle-safe)."""
    chain = [task_id]
    seen = {task_id}
    current = states.get(task_id)
    while current is not None and current.is_callback and current.parent_task:
        parent = current.parent_task
        if parent in seen or parent not in states:
            break
        chain.append(parent)
        seen.add(parent)
        current = states.get(parent)
    chain.reverse()
    return chain


def build_snapshot(
    registry: TaskRegistry,
    definitions: Mapping[str, TaskDefinition],
    *,
    now: float | None = None,
    hide_skipped: bool = False,
) -> list[TaskSnapshot]:
    states = registry.snapshot()
    now = registry.now() if now is None else now

    chains = {task_id: lineage(states, task_id) for task_id in states}
    ordered = sorted(states, key=lambda task_id: chains[task_id])

    out = []
    for task_id in ordered:
        state = states[task_id]
        if hide_skipped and state.status == TaskStatus.SKIPPED:
            continue
        out.append(
            TaskSnapshot(
                task_id=task_id,
                state=state,
                definition=definitions.get(task_id),
                depth=len(chains[task_id]) - 1,
                elapsed=state.elapsed(now),
            )
        )
    return out


def headline(states: Iterable[TaskState]) -> RunHeadline:
    """Overall run status: running while anything runs, else failed/completed."""
    states = list(states)
    if any(st.status == TaskStatus.RUNNING for st in states):
        return RunHeadline.RUNNING
    if any(st.status in (TaskStatus.FAILED, TaskStatus.ABORTED) for st in states):
        return RunHeadline.FAILED
    return RunHeadline.COMPLETED
