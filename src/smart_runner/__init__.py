"""
smart-runner: asynchronous task orchestrator.

Runs a declarative graph of named tasks (shell commands, Python callables or
custom handlers) with dependencies, `when` gates and success/failure callback
chains on a single asyncio event loop.
"""

from .tasks.task_api import RunSummary, TaskRunner
from .tasks.task_models import TaskDefinition, TaskResult, TaskStatus

__all__ = ["RunSummary", "TaskDefinition", "TaskResult", "TaskRunner", "TaskStatus"]
