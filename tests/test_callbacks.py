# tests/test_callbacks.py

from __future__ import annotations

import asyncio

import pytest

from smart_runner.tasks.task_models import TaskResult, TaskStatus


@pytest.mark.asyncio
async def test_on_success_runs_callback_with_lineage(runner) -> None:
    summary = await runner.run(
        {
            "build": {"command": "exit 0", "on_success": "notify"},
            "notify": {"command": "exit 0", "when": lambda: True, "depends_on": ["never"]},
        }
    )

    # "notify" is waiting on an unknown dependency, so the callback cannot start it.
    assert summary.statuses["build"] == TaskStatus.SUCCESS
    assert summary.statuses["notify"] == TaskStatus.WAITING
    state = runner.registry.get("notify")
    assert state.is_callback
    assert state.parent_task == "build"


@pytest.mark.asyncio
async def test_on_fail_list_chains_lineage(runner, templates) -> None:
    templates.register("fix", {"command": "exit 0"})
    templates.register("stage", {"command": "exit 0"})

    summary = await runner.run({"lint": {"command": "exit 1", "on_fail": ["fix", "stage"]}})

    assert summary.statuses == {
        "lint": TaskStatus.FAILED,
        "fix": TaskStatus.SUCCESS,
        "stage": TaskStatus.SUCCESS,
    }
    assert runner.registry.get("fix").parent_task == "lint"
    assert runner.registry.get("stage").parent_task == "fix"
    assert "fix" in runner.batch and "stage" in runner.batch


@pytest.mark.asyncio
async def test_callback_targets_run_once(runner, templates) -> None:
    runs: list[str] = []
    templates.register("shared", {"fn": lambda: runs.append("x") or True})

    summary = await runner.run(
        {
            "a": {"command": "exit 0", "on_success": "shared"},
            "b": {"command": "exit 0", "on_success": "shared"},
        }
    )

    assert runs == ["x"]
    assert summary.statuses["shared"] == TaskStatus.SUCCESS
    assert runner.registry.get("shared").parent_task in {"a", "b"}


@pytest.mark.asyncio
async def test_unknown_callback_target_is_reported(runner, notifier) -> None:
    summary = await runner.run({"a": {"command": "exit 0", "on_success": "missing"}})

    assert summary.statuses == {"a": TaskStatus.SUCCESS}
    assert "Callback task not found: missing" in notifier.messages


@pytest.mark.asyncio
async def test_function_callback_receives_result(runner) -> None:
    received: list[TaskResult] = []

    summary = await runner.run({"a": {"command": "exit 1", "on_fail": received.append}})

    assert summary.statuses["a"] == TaskStatus.FAILED
    assert len(received) == 1
    assert received[0].success is False
    assert received[0].exit_code == 1


@pytest.mark.asyncio
async def test_async_function_callback_is_awaited(runner) -> None:
    done = asyncio.Event()

    async def on_success(result: TaskResult) -> None:
        await asyncio.sleep(0.01)
        done.set()

    await runner.run({"a": {"command": "exit 0", "on_success": on_success}})

    assert done.is_set()


@pytest.mark.asyncio
async def test_function_callback_error_is_contained(runner, notifier) -> None:
    def broken(result: TaskResult) -> None:
        raise RuntimeError("callback exploded")

    summary = await runner.run(
        {
            "a": {"command": "exit 0", "on_success": broken},
            "b": {"command": "exit 0", "depends_on": ["a"]},
        }
    )

    assert summary.statuses == {"a": TaskStatus.SUCCESS, "b": TaskStatus.SUCCESS}
    assert "Callback function error: callback exploded" in notifier.messages


@pytest.mark.asyncio
async def test_skipped_task_fires_no_callbacks(runner) -> None:
    received: list[TaskResult] = []

    summary = await runner.run(
        {"a": {"command": "exit 0", "when": lambda: False, "on_success": received.append}}
    )

    assert summary.statuses["a"] == TaskStatus.SKIPPED
    assert received == []


@pytest.mark.asyncio
async def test_callback_on_batch_task_that_already_finished_does_not_rerun(runner) -> None:
    runs: list[str] = []

    summary = await runner.run(
        {
            "first": {"fn": lambda: runs.append("first") or True},
            "second": {"command": "exit 0", "depends_on": ["first"], "on_success": "first"},
        }
    )

    assert runs == ["first"]
    assert summary.statuses == {"first": TaskStatus.SUCCESS, "second": TaskStatus.SUCCESS}
