# src/smart_runner/tasks/callbacks.py

from __future__ import annotations

"""
Callback dispatch (on_success / on_fail).

A callback is a task id, a function taking the TaskResult, or a list mixing both.

Task ids are looked up in the current batch first, then among templates; a
template is copied into the batch the first time it is referenced. A callback
task only starts while it is still pending, so a task referenced by several
parents runs at most once. Lineage (is_callback / parent_task) is for display
only and never influences scheduling.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping, MutableMapping, Sequence
from typing import Any

from ..core.ports import LoggingNotifier, Notifier
from .task_models import CallbackSpec, TaskDefinition, TaskResult, TaskStatus
from .task_store import TaskRegistry
from .templates import TemplateRegistry

logger = logging.getLogger(__name__)

Launcher = Callable[[TaskDefinition], Any]


class CallbackDispatcher:
    def __init__(
        self,
        registry: TaskRegistry,
        templates: TemplateRegistry | None,
        *,
        launch: Launcher,
        notifier: Notifier | None = None,
    ) -> None:
        self._registry = registry
        self._templates = templates or TemplateRegistry()
        self._launch = launch
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._batch: MutableMapping[str, TaskDefinition] = {}
        self._pending_calls: set[asyncio.Task[Any]] = set()

    def reset(self, batch: MutableMapping[str, TaskDefinition]) -> None:
        """Point the dispatcher at the batch of a new run (materialized templates land there)."""
        self._batch = batch

    @property
    def batch(self) -> Mapping[str, TaskDefinition]:
        return self._batch

    def on_complete(self, task: TaskDefinition, result: TaskResult) -> None:
        callback = task.on_success if result.success else task.on_fail
        if callback:
            logger.debug(
                "Task %s %s, dispatching %s",
                task.id,
                "succeeded" if result.success else "failed",
                "on_success" if result.success else "on_fail",
            )
            self.dispatch(callback, result, task.id)

    def dispatch(self, callback: CallbackSpec, result: TaskResult, parent_id: str | None) -> None:
        if isinstance(callback, str):
            self._dispatch_task(callback, result, parent_id)
            return

        if callable(callback):
            self._dispatch_function(callback, result)
            return

        if isinstance(callback, Sequence):
            # Later entries hang below the previous entry when that entry was a task,
            # so [fix, stage] renders as parent -> fix -> stage.
            for index, single in enumerate(callback):
                effective_parent = parent_id
                if index > 0 and isinstance(callback[index - 1], str):
                    effective_parent = callback[index - 1]
                self.dispatch(single, result, effective_parent)
            return

        self._notifier.notify(
            f"Unsupported callback type {type(callback).__name__} on task {parent_id}"
        )

    # ---- Task callbacks --------------------------------------------------------

    def resolve(self, task_id: str) -> TaskDefinition | None:
        """Batch task, or a template materialized into the batch on first use."""
        task = self._batch.get(task_id)
        if task is not None:
            return task

        template = self._templates.get(task_id)
        if template is None:
            return None

        logger.debug("Using predefined task %r as callback", task_id)
        self._batch[task_id] = template
        return template

    def _dispatch_task(self, task_id: str, result: TaskResult, parent_id: str | None) -> None:
        task = self.resolve(task_id)
        if task is None:
            self._notifier.notify(f"Callback task not found: {task_id}")
            return

        if task_id not in self._registry:
            self._registry.initialize(task_id, task, is_callback=True, parent_task=parent_id)
        else:
            self._registry.mark_callback(task_id, parent_id)

        if not self._registry.is_state(task_id, TaskStatus.PENDING):
            logger.debug(
                "Callback task %s already %s; not starting again",
                task_id,
                self._registry.status_of(task_id),
            )
            return

        # Start on the next loop iteration, not inside the completion path.
        asyncio.get_running_loop().call_soon(self._launch_if_pending, task)

    def _launch_if_pending(self, task: TaskDefinition) -> None:
        if self._registry.is_state(task.id, TaskStatus.PENDING):
            self._launch(task)

    # ---- Function callbacks ----------------------------------------------------

    def _dispatch_function(self, fn: Callable[[TaskResult], Any], result: TaskResult) -> None:
        # A task runs on the next loop iteration, never inside the completion path.
        job = asyncio.create_task(self._invoke_function(fn, result), name="smart-runner:callback")
        self._pending_calls.add(job)
        job.add_done_callback(self._pending_calls.discard)

    async def _invoke_function(self, fn: Callable[[TaskResult], Any], result: TaskResult) -> None:
        try:
            ret = fn(result)
            if inspect.isawaitable(ret):
                await ret
        except Exception as e:
            self._report_callback_error(fn, e)

    def _report_callback_error(self, fn: Callable[..., Any], err: BaseException) -> None:
        name = getattr(fn, "__qualname__", None) or repr(fn)
        logger.error("Callback function %s raised", name, exc_info=err)
        self._notifier.notify(f"Callback function error: {err}", logging.ERROR)

    def pending_count(self) -> int:
        return len(self._pending_calls)

    async def wait_idle(self) -> None:
        """Wait for function callbacks that have not returned yet."""
        while self._pending_calls:
            await asyncio.gather(*list(self._pending_calls), return_exceptions=True)
