# src/smart_runner/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- picks the LLM client (offline fallback when not configured),
- loads the task file and wires templates into a TaskRunner.
"""

from __future__ import annotations

import logging
import runpy
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import Settings, get_settings
from ..core.ports import LLMClient, Notifier
from ..errors import LLMNotConfiguredError, TaskFileError
from ..llm.client import OpenAILLMClient
from ..llm.offline import OfflineLLMClient
from ..predefined import default_templates
from ..tasks.task_api import TaskRunner
from ..tasks.task_models import RunConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskFile:
    """What a task file exposes: TASKS (required), TEMPLATES and OPTIONS (optional)."""

    path: Path
    tasks: dict[str, Any]
    templates: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)


def load_task_file(path: str | Path) -> TaskFile:
    path = Path(path)
    if not path.is_file():
        raise TaskFileError(f"Task file not found: {path}")

    try:
        namespace = runpy.run_path(str(path), run_name="smart_runner_tasks")
    except Exception as e:
        raise TaskFileError(f"Failed to load task file {path}: {e}") from e

    tasks = namespace.get("TASKS")
    if not isinstance(tasks, Mapping):
        raise TaskFileError(f"Task file {path} must define TASKS as a mapping")

    templates = namespace.get("TEMPLATES") or {}
    options = namespace.get("OPTIONS") or {}
    if not isinstance(templates, Mapping) or not isinstance(options, Mapping):
        raise TaskFileError(f"Task file {path}: TEMPLATES and OPTIONS must be mappings")

    logger.info("Loaded %d task(s) from %s", len(tasks), path)
    return TaskFile(path=path, tasks=dict(tasks), templates=dict(templates), options=dict(options))


def create_llm_client(settings: Settings) -> LLMClient:
    try:
        return OpenAILLMClient(settings)
    except LLMNotConfiguredError as e:
        logger.info("LLM not configured (%s); using offline client", e)
        return OfflineLLMClient()


def create_runner(
    *,
    settings: Settings | None = None,
    task_file: TaskFile | None = None,
    notifier: Notifier | None = None,
    llm: LLMClient | None = None,
) -> TaskRunner:
    """
    Create a TaskRunner from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    settings.data_dir.mkdir(parents=True, exist_ok=True)

    templates = default_templates(llm or create_llm_client(settings))
    config = RunConfig(hide_skipped=settings.hide_skipped)
    if task_file is not None:
        templates.update(task_file.templates)
        config.cwd = str(task_file.path.resolve().parent)
        config.options.update(task_file.options)
        if "hide_skipped" in task_file.options:
            config.hide_skipped = bool(task_file.options["hide_skipped"])

    return TaskRunner(
        settings=settings,
        templates=templates,
        notifier=notifier,
        config=config,
    )
