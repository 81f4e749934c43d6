# src/smart_runner/tasks/executor.py

from __future__ import annotations

"""
Task executor.

Decides how one task runs (handler > fn > command), drives it to a terminal
status and hands the result to the callback dispatcher.

Every terminal write goes through TaskRegistry.safe_set_state(); when that write
is refused (task was aborted meanwhile) no callbacks fire.
"""

import asyncio
import inspect
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..core.ports import LoggingNotifier, Notifier
from .processes import ProcessManager
from .task_models import (
    Failed,
    RunCommand,
    RunConfig,
    StillRunning,
    Succeeded,
    TaskDefinition,
    TaskResult,
    TaskState,
    TaskStatus,
    coerce_function_return,
    coerce_handler_return,
)
from .task_store import TaskRegistry

if TYPE_CHECKING:
    from .callbacks import CallbackDispatcher

logger = logging.getLogger(__name__)

COMMAND_SEPARATOR = "\n---- $ {command} ----\n"
_LITERAL_EXITS = {"exit 0": True, "exit 1": False}


@dataclass(slots=True)
class TaskContext:
    """
    What a handler receives.

    Handlers that return None (or StillRunning) keep ownership of the task and
    must finish it later through succeed()/fail()/skip().
    """

    task: TaskDefinition
    config: RunConfig
    registry: TaskRegistry
    processes: ProcessManager
    runner: Any = None
    _executor: "Executor | None" = field(default=None, repr=False)

    @property
    def state(self) -> TaskState | None:
        return self.registry.get(self.task.id)

    def append_output(self, text: str) -> None:
        self.registry.append_output(self.task.id, text)

    def succeed(self, message: str | None = None) -> TaskResult | None:
        return self._finish(Succeeded(message))

    def fail(self, message: str | None = None) -> TaskResult | None:
        return self._finish(Failed(message))

    def skip(self, note: str | None = None) -> bool:
        """running -> skipped. Skipped tasks fire no callbacks."""
        if note:
            self.append_output(note)
        return self.registry.safe_set_state(self.task.id, TaskStatus.SKIPPED)

    async def run_command(self, command: str, *, timeout: float | None = None) -> TaskResult:
        """
        Run a command under this task id (output lands in the task output).

        `timeout` defaults to the task timeout, then to the executor default.
        """
        if timeout is None:
            timeout = self.task.timeout
        if timeout is None and self._executor is not None:
            timeout = self._executor.default_timeout
        return await self.processes.run_command(
            self.task.id, command, env=self.task.env, cwd=self.task.cwd or self.config.cwd, timeout=timeout
        )

    def _finish(self, outcome: Succeeded | Failed) -> TaskResult | None:
        if self._executor is None:
            raise RuntimeError("TaskContext is not bound to an executor")
        return self._executor.finish_outcome(self.task, outcome)


class Executor:
    def __init__(
        self,
        registry: TaskRegistry,
        processes: ProcessManager,
        *,
        notifier: Notifier | None = None,
        config: RunConfig | None = None,
        default_timeout: float | None = None,
        runner: Any = None,
    ) -> None:
        self.registry = registry
        self.processes = processes
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.config = config or RunConfig()
        self.default_timeout = default_timeout
        self.runner = runner
        self.callbacks: CallbackDispatcher | None = None
        self._inflight: set[asyncio.Task[TaskResult | None]] = set()
        self._halted = False

    # ---- Lifecycle -------------------------------------------------------------

    def halt(self) -> None:
        """Refuse to start anything new (after kill_all)."""
        self._halted = True

    def resume(self) -> None:
        self._halted = False

    @property
    def halted(self) -> bool:
        return self._halted

    def inflight_count(self) -> int:
        return len(self._inflight)

    async def wait_idle(self) -> None:
        """Wait until every task started by this executor has returned."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ---- Entry points ----------------------------------------------------------

    def start(self, task: TaskDefinition) -> asyncio.Task[TaskResult | None] | None:
        """
        Mark the task running right now and schedule its execution.

        Returns None when the task cannot start (no id, already started/finished,
        executor halted).
        """
        if not getattr(task, "id", None):
            self.notifier.notify("Task has no id, skipping", logging.ERROR)
            return None

        if self._halted:
            logger.debug("Executor halted; not starting %s", task.id)
            return None

        if task.id not in self.registry:
            self.registry.initialize(task.id, task)

        if not self.registry.set_running(task.id):
            logger.debug(
                "Task %s not startable (status=%s)", task.id, self.registry.status_of(task.id)
            )
            return None

        job = asyncio.create_task(
            self._execute(task),
            name=f"smart-runner:{task.id}",
            context=self.registry.run_context(),
        )
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)
        return job

    async def run_task(self, task: TaskDefinition) -> TaskResult | None:
        """Run one task to completion. Returns its result, or None if it did not finish here."""
        job = self.start(task)
        if job is None:
            return None
        return await job

    async def _execute(self, task: TaskDefinition) -> TaskResult | None:
        try:
            if task.handler is not None:
                return await self._execute_handler(task)

            if task.fn is not None:
                return await self._execute_function(task)

            command = resolve_command(task)
            if not command:
                return self._handle_empty_command(task)
            return await self._execute_command(task, command)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Task %s crashed", task.id)
            self.registry.append_output(task.id, f"{type(e).__name__}: {e}\n")
            return self.finish_outcome(task, Failed(str(e) or type(e).__name__))

    # ---- Handler / function ----------------------------------------------------

    async def _execute_handler(self, task: TaskDefinition) -> TaskResult | None:
        ctx = TaskContext(
            task=task,
            config=self.config,
            registry=self.registry,
            processes=self.processes,
            runner=self.runner,
            _executor=self,
        )
        raw = task.handler(ctx)
        if inspect.isawaitable(raw):
            raw = await raw

        outcome = coerce_handler_return(raw)
        if isinstance(outcome, RunCommand):
            command = normalize_command(task.id, outcome.command)
            if not command:
                return self._handle_empty_command(task)
            return await self._execute_command(task, command)
        if isinstance(outcome, StillRunning):
            logger.debug("Task %s: handler keeps ownership (still running)", task.id)
            return None
        return self.finish_outcome(task, outcome)

    async def _execute_function(self, task: TaskDefinition) -> TaskResult | None:
        raw = task.fn()
        if inspect.isawaitable(raw):
            raw = await raw
        return self.finish_outcome(task, coerce_function_return(raw))

    # ---- Commands --------------------------------------------------------------

    def _handle_empty_command(self, task: TaskDefinition) -> TaskResult | None:
        self.notifier.notify(f"Empty command for task: {task.id}, marking as success")
        return self.finish_outcome(task, Succeeded())

    async def _execute_command(self, task: TaskDefinition, commands: list[str]) -> TaskResult | None:
        """
        Run commands strictly in order; the first non-zero exit fails the task.

        The timeout covers the whole sequence: each command gets what is left of it.
        """
        result: TaskResult | None = None
        timeout = task.timeout if task.timeout is not None else self.default_timeout
        cwd = task.cwd or self.config.cwd
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        for index, command in enumerate(commands):
            if self.registry.is_stale() or self.registry.is_state(task.id, TaskStatus.ABORTED):
                logger.debug("Task %s aborted; skipping remaining commands", task.id)
                return None

            if index > 0:
                self.registry.append_output(task.id, COMMAND_SEPARATOR.format(command=command))

            literal = _LITERAL_EXITS.get(command.strip())
            if literal is not None:
                result = TaskResult(
                    success=literal,
                    exit_code=0 if literal else 1,
                    output=self._output_of(task.id),
                )
            elif deadline is not None and deadline - loop.time() <= 0:
                result = self.processes.expire(task.id, timeout)
            else:
                result = await self.processes.run_command(
                    task.id,
                    command,
                    env=task.env,
                    cwd=cwd,
                    timeout=None if deadline is None else deadline - loop.time(),
                    timeout_label=timeout,
                )

            if not result.success:
                if len(commands) > 1:
                    logger.info(
                        "Task %s: command %d/%d failed (exit %s): %s",
                        task.id,
                        index + 1,
                        len(commands),
                        result.exit_code,
                        command,
                    )
                return self.finish(task, result)

        assert result is not None
        return self.finish(task, result)

    # ---- Completion ------------------------------------------------------------

    def finish_outcome(self, task: TaskDefinition, outcome: Succeeded | Failed) -> TaskResult | None:
        success = isinstance(outcome, Succeeded)
        if outcome.message and not success:
            self.registry.append_output(task.id, outcome.message + "\n")
        result = TaskResult(
            success=success,
            output=self._output_of(task.id),
            error_message=outcome.message,
        )
        return self.finish(task, result)

    def finish(self, task: TaskDefinition, result: TaskResult) -> TaskResult | None:
        """
        Write the terminal status for `result` and dispatch on_success/on_fail.

        Returns None when the registry refused the write (task already aborted
        or otherwise terminal).
        """
        status = TaskStatus.SUCCESS if result.success else TaskStatus.FAILED
        if not self.registry.safe_set_state(task.id, status):
            logger.debug("Task %s: completion ignored (status=%s)", task.id, self.registry.status_of(task.id))
            return None

        result.output = self._output_of(task.id)
        if self.callbacks is not None:
            self.callbacks.on_complete(task, result)
        return result

    def _output_of(self, task_id: str) -> str:
        state = self.registry.get(task_id)
        return state.output if state is not None else ""


def resolve_command(task: TaskDefinition) -> list[str]:
    """
    Evaluate task.command (lazily, at execution time) into a list of commands.

    A callable may take the task definition as its single argument or nothing.
    Blank entries are dropped; an empty list means "nothing to run".
    """
    command = task.command
    if callable(command):
        try:
            nparams = len(inspect.signature(command).parameters)
        except (TypeError, ValueError):
            nparams = 0
        command = command(task) if nparams >= 1 else command()
    return normalize_command(task.id, command)


def normalize_command(task_id: str, command: Any) -> list[str]:
    if command is None:
        return []
    if isinstance(command, str):
        return [command] if command.strip() else []
    if isinstance(command, Sequence):
        out = []
        for part in command:
            if not isinstance(part, str):
                raise TypeError(f"Task {task_id}: command list entries must be strings")
            if part.strip():
                out.append(part)
        return out
    raise TypeError(f"Task {task_id}: unsupported command type {type(command).__name__}")
