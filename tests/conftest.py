# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from smart_runner.tasks.processes import ProcessManager
from smart_runner.tasks.task_api import TaskRunner
from smart_runner.tasks.task_store import TaskRegistry
from smart_runner.tasks.templates import TemplateRegistry

from .fakes import RecordingNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with TaskRunner and the CLI bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the developer's environment / .env.
    """
    return SimpleNamespace(
        app_name="smart-runner-test",
        log_level="DEBUG",
        debug=True,
        data_dir=tmp_path / "data",
        # Fast polling keeps dependency tests quick.
        poll_interval_seconds=0.02,
        kill_grace_seconds=0.2,
        default_timeout_seconds=None,
        refresh_interval_seconds=0.02,
        hide_skipped=False,
        task_file_name=".smart-runner.py",
        llm_api_key=None,
        llm_base_url="https://example.invalid/v1",
        llm_models=["test/model"],
        llm_extra_headers={},
    )


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def templates() -> TemplateRegistry:
    return TemplateRegistry()


@pytest.fixture()
def runner(settings: SimpleNamespace, templates: TemplateRegistry, notifier: RecordingNotifier) -> TaskRunner:
    return TaskRunner(settings=settings, templates=templates, notifier=notifier)


@pytest.fixture()
def registry() -> TaskRegistry:
    return TaskRegistry()


@pytest.fixture()
def processes(registry: TaskRegistry) -> ProcessManager:
    return ProcessManager(registry, kill_grace_seconds=0.2)
