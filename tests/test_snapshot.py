# tests/test_snapshot.py

from __future__ import annotations

import io

from smart_runner.cli.render import ConsoleRenderer, format_output, format_task_line
from smart_runner.tasks.snapshot import RunHeadline, build_snapshot, headline, lineage
from smart_runner.tasks.task_models import TaskDefinition, TaskState, TaskStatus
from smart_runner.tasks.task_store import TaskRegistry


def _registry_with_tree() -> tuple[TaskRegistry, dict[str, TaskDefinition]]:
    now = [10.0]
    registry = TaskRegistry(clock=lambda: now[0])
    defs = {
        "lint": TaskDefinition(id="lint", label="Lint", icon="L"),
        "test": TaskDefinition(id="test"),
        "fix": TaskDefinition(id="fix", label="Fix"),
        "stage": TaskDefinition(id="stage"),
    }
    registry.initialize("lint", defs["lint"])
    registry.initialize("test", defs["test"])
    registry.initialize("fix", defs["fix"], is_callback=True, parent_task="lint")
    registry.initialize("stage", defs["stage"], is_callback=True, parent_task="fix")

    registry.set_running("lint")
    now[0] = 11.5
    registry.safe_set_state("lint", TaskStatus.FAILED)
    registry.force_state("test", TaskStatus.SKIPPED)
    return registry, defs


def test_callbacks_follow_their_parent() -> None:
    registry, defs = _registry_with_tree()

    snap = build_snapshot(registry, defs)

    assert [(s.task_id, s.depth) for s in snap] == [
        ("lint", 0),
        ("fix", 1),
        ("stage", 2),
        ("test", 0),
    ]
    assert snap[0].elapsed == 1.5
    assert snap[0].label == "Lint"
    assert snap[3].label == "test"


def test_hide_skipped() -> None:
    registry, defs = _registry_with_tree()

    snap = build_snapshot(registry, defs, hide_skipped=True)

    assert "test" not in [s.task_id for s in snap]


def test_lineage_is_cycle_safe() -> None:
    states = {
        "a": TaskState(is_callback=True, parent_task="b"),
        "b": TaskState(is_callback=True, parent_task="a"),
    }
    assert lineage(states, "a") == ["b", "a"]


def test_headline() -> None:
    assert headline([TaskState(status=TaskStatus.RUNNING), TaskState(status=TaskStatus.FAILED)]) == RunHeadline.RUNNING
    assert headline([TaskState(status=TaskStatus.SUCCESS), TaskState(status=TaskStatus.ABORTED)]) == RunHeadline.FAILED
    assert headline([TaskState(status=TaskStatus.SUCCESS), TaskState(status=TaskStatus.SKIPPED)]) == RunHeadline.COMPLETED


def test_format_task_line_and_output() -> None:
    registry, defs = _registry_with_tree()
    snap = {s.task_id: s for s in build_snapshot(registry, defs)}

    assert format_task_line(snap["lint"]) == "L Lint ✗ Failed (1.50s)"
    assert format_task_line(snap["fix"]) == "└ Fix ○ Pending"
    assert format_task_line(snap["stage"]) == "  └ stage ○ Pending"
    assert format_output("a\nb\n") == ["    a", "    b"]
    assert format_output("") == ["    No output available"]


def test_non_live_renderer_prints_changes_once() -> None:
    registry, defs = _registry_with_tree()
    out = io.StringIO()
    renderer = ConsoleRenderer(out, live=False)

    renderer.render(build_snapshot(registry, defs))
    renderer.render(build_snapshot(registry, defs))

    lines = out.getvalue().splitlines()
    assert lines == ["L Lint ✗ Failed (1.50s)", "test ↷ Skipped"]
