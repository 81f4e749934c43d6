# src/smart_runner/tasks/task_models.py

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Union

from ..errors import TaskDefinitionError


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Legal transitions:
    - pending -> waiting (unmet dependencies at seed time)
    - pending -> skipped (`when` returned false)
    - pending | waiting -> running
    - running -> success | failed | skipped | aborted

    Nothing leaves a terminal status; aborted is additionally protected against
    late writes from a process that finishes after a kill.
    """

    PENDING = "pending"
    WAITING = "waiting"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.SUCCESS, TaskStatus.FAILED, TaskStatus.SKIPPED, TaskStatus.ABORTED}
)
ACTIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.WAITING, TaskStatus.RUNNING})
# A dependency in one of these lets its dependents start.
DEPENDENCY_SATISFIED = frozenset({TaskStatus.SUCCESS, TaskStatus.SKIPPED})
# A dependency in one of these can never satisfy its dependents.
DEPENDENCY_BLOCKING = frozenset({TaskStatus.FAILED, TaskStatus.ABORTED})


@dataclass(slots=True)
class TaskResult:
    """What callbacks receive once a task reaches success or failed."""

    success: bool
    exit_code: int | None = None
    output: str = ""
    stdout: str = ""
    stderr: str = ""
    error_message: str | None = None
    timed_out: bool = False


CommandSpec = Union[str, Sequence[str], Callable[..., Any]]
CallbackFn = Callable[[TaskResult], Any]
CallbackSpec = Union[str, CallbackFn, Sequence[Union[str, CallbackFn]]]

_MAPPING_FIELDS = {
    "id",
    "label",
    "icon",
    "command",
    "fn",
    "handler",
    "when",
    "depends_on",
    "on_success",
    "on_fail",
    "cwd",
    "env",
    "timeout",
    "extend",
}
_MAPPING_ALIASES = {"function_body": "fn", "function": "fn"}


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    """
    Immutable description of one task, as handed over by the config layer.

    Exactly one execution method is used, in this priority order:
    handler > fn > command. A definition without any of them is a vacuous success.
    """

    id: str
    label: str | None = None
    icon: str = ""
    command: CommandSpec | None = None
    fn: Callable[[], Any] | None = None
    handler: Callable[..., Any] | None = None
    when: Callable[[], Any] | None = None
    depends_on: tuple[str, ...] = ()
    on_success: CallbackSpec | None = None
    on_fail: CallbackSpec | None = None
    cwd: str | None = None
    env: Mapping[str, str] | None = None
    timeout: float | None = None
    # Only meaningful before batch resolution; resolved definitions carry None.
    extend: str | None = None

    @property
    def display_label(self) -> str:
        return self.label or self.id

    @staticmethod
    def from_mapping(task_id: str | None, raw: Mapping[str, Any]) -> "TaskDefinition":
        """
        Build a definition from a plain dict (task files use dicts).

        `task_id` is the mapping key; an explicit "id" entry wins. Raises
        TaskDefinitionError for a missing id or unknown keys.
        """
        data: dict[str, Any] = {}
        for key, value in raw.items():
            name = _MAPPING_ALIASES.get(key, key)
            if name not in _MAPPING_FIELDS:
                raise TaskDefinitionError(f"Task {task_id or '?'}: unknown field {key!r}")
            data[name] = value

        tid = data.pop("id", None) or task_id
        if not isinstance(tid, str) or not tid.strip():
            raise TaskDefinitionError("Task has no id")

        data["depends_on"] = normalize_depends_on(tid, data.get("depends_on"))
        if data.get("timeout") is not None:
            try:
                data["timeout"] = float(data["timeout"])
            except (TypeError, ValueError) as e:
                raise TaskDefinitionError(f"Task {tid}: timeout must be a number") from e

        env = data.get("env")
        if env is not None and not isinstance(env, Mapping):
            raise TaskDefinitionError(f"Task {tid}: env must be a mapping")

        return TaskDefinition(id=tid, **data)


def normalize_depends_on(task_id: str, raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if isinstance(raw, Sequence):
        deps = []
        for dep in raw:
            if not isinstance(dep, str) or not dep:
                raise TaskDefinitionError(f"Task {task_id}: depends_on entries must be task ids")
            deps.append(dep)
        return tuple(deps)
    raise TaskDefinitionError(f"Task {task_id}: depends_on must be a list of task ids")


@dataclass(slots=True)
class TaskState:
    """Mutable per-run state of one task. Owned by TaskRegistry."""

    status: TaskStatus = TaskStatus.PENDING
    output: str = ""
    start_time: float | None = None
    end_time: float | None = None
    depends_on: tuple[str, ...] = ()
    is_callback: bool = False
    parent_task: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def elapsed(self, now: float | None = None) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time
        if end is None:
            end = time.monotonic() if now is None else now
        return max(0.0, end - self.start_time)


# ---- Handler / function outcomes -------------------------------------------------
#
# Handlers and plain functions may return loosely-typed values (bool, str, None,
# {"ok": ..., "message": ...}). They are coerced once into these variants so the
# executor branches on a closed set of types.


@dataclass(frozen=True, slots=True)
class Succeeded:
    message: str | None = None


@dataclass(frozen=True, slots=True)
class Failed:
    message: str | None = None


@dataclass(frozen=True, slots=True)
class RunCommand:
    command: str | Sequence[str]


@dataclass(frozen=True, slots=True)
class StillRunning:
    """The handler finishes the task itself later (through its TaskContext)."""


Outcome = Union[Succeeded, Failed, RunCommand, StillRunning]


def _coerce_ok_mapping(value: Mapping[str, Any]) -> Succeeded | Failed:
    message = value.get("message")
    message = None if message is None else str(message)
    return Succeeded(message) if value.get("ok") else Failed(message)


def coerce_function_return(value: Any) -> Succeeded | Failed:
    """
    Map what a `fn` task returned onto success/failure.

    - bool -> success/failure
    - {"ok": bool, "message": str} -> success/failure carrying the message
    - Succeeded/Failed -> as is
    - anything else -> failure
    """
    if isinstance(value, (Succeeded, Failed)):
        return value
    if isinstance(value, bool):
        return Succeeded() if value else Failed()
    if isinstance(value, Mapping) and "ok" in value:
        return _coerce_ok_mapping(value)
    return Failed(f"Function returned unsupported value of type {type(value).__name__}")


def coerce_handler_return(value: Any) -> Outcome:
    """
    Map what a handler returned onto an Outcome.

    None means "still running": the handler owns the task from now on.
    A string is a command to execute under the same task id.
    """
    if isinstance(value, (Succeeded, Failed, RunCommand, StillRunning)):
        return value
    if value is None:
        return StillRunning()
    if isinstance(value, bool):
        return Succeeded() if value else Failed()
    if isinstance(value, str):
        return RunCommand(value)
    if isinstance(value, Mapping) and "ok" in value:
        return _coerce_ok_mapping(value)
    return Failed(f"Handler returned unsupported value of type {type(value).__name__}")


@dataclass(slots=True)
class RunConfig:
    """
    Free-form run configuration handed to handlers (TaskContext.config).

    `options` carries host-specific values (commit message file, ...).
    """

    cwd: str | None = None
    hide_skipped: bool = False
    options: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)
