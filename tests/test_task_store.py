# tests/test_task_store.py

from __future__ import annotations

from smart_runner.tasks.task_models import TaskDefinition, TaskStatus
from smart_runner.tasks.task_store import TaskRegistry


def _task(task_id: str, **kw) -> TaskDefinition:
    return TaskDefinition(id=task_id, **kw)


def test_initialize_creates_pending_with_dependencies(registry: TaskRegistry) -> None:
    state = registry.initialize("b", _task("b", depends_on=("a",)))

    assert state.status == TaskStatus.PENDING
    assert state.depends_on == ("a",)
    assert not state.is_callback
    assert registry.status_of("b") == TaskStatus.PENDING


def test_reinitialize_keeps_lineage_and_does_not_reset_started_task(registry: TaskRegistry) -> None:
    registry.initialize("fix", _task("fix"), is_callback=True, parent_task="lint")
    registry.set_running("fix")
    registry.append_output("fix", "working")

    state = registry.initialize("fix", _task("fix"))

    assert state.status == TaskStatus.RUNNING
    assert state.output == "working"
    assert state.is_callback
    assert state.parent_task == "lint"


def test_set_running_only_from_pending_or_waiting(registry: TaskRegistry) -> None:
    registry.initialize("a", _task("a"))
    assert registry.set_running("a")
    assert not registry.set_running("a")

    registry.initialize("b", _task("b"))
    registry.force_state("b", TaskStatus.WAITING)
    assert registry.set_running("b")
    assert registry.get("b").start_time is not None

    assert not registry.set_running("unknown")


def test_aborted_is_sticky(registry: TaskRegistry) -> None:
    registry.initialize("a", _task("a"))
    registry.set_running("a")

    assert registry.set_aborted("a", "[Process aborted by user]")
    assert not registry.set_aborted("a", "again")
    assert not registry.safe_set_state("a", TaskStatus.SUCCESS)
    assert not registry.force_state("a", TaskStatus.FAILED)
    assert not registry.set_running("a")

    state = registry.get("a")
    assert state.status == TaskStatus.ABORTED
    assert state.output.endswith("\n[Process aborted by user]")
    assert state.end_time is not None


def test_safe_set_state_refuses_terminal_tasks(registry: TaskRegistry) -> None:
    registry.initialize("a", _task("a"))
    registry.set_running("a")

    assert registry.safe_set_state("a", TaskStatus.FAILED)
    assert not registry.safe_set_state("a", TaskStatus.SUCCESS)
    assert registry.status_of("a") == TaskStatus.FAILED


def test_mark_callback_keeps_first_parent(registry: TaskRegistry) -> None:
    registry.initialize("c", _task("c"))

    registry.mark_callback("c", "a")
    registry.mark_callback("c", "b")

    state = registry.get("c")
    assert state.is_callback
    assert state.parent_task == "a"


def test_mark_callback_before_initialize_is_applied_later(registry: TaskRegistry) -> None:
    assert not registry.mark_callback("later", "parent")

    state = registry.initialize("later", _task("later"))

    assert state.is_callback
    assert state.parent_task == "parent"


def test_self_parent_is_never_recorded(registry: TaskRegistry) -> None:
    registry.initialize("loop", _task("loop"), is_callback=True, parent_task="loop")
    assert registry.get("loop").parent_task is None


def test_all_terminal_and_snapshot_copies(registry: TaskRegistry) -> None:
    registry.initialize("a", _task("a"))
    registry.initialize("b", _task("b"))
    assert not registry.all_terminal()

    registry.force_state("a", TaskStatus.SKIPPED)
    registry.set_running("b")
    registry.safe_set_state("b", TaskStatus.SUCCESS)
    assert registry.all_terminal()

    snap = registry.snapshot()
    snap["a"].output = "changed"
    assert registry.get("a").output == ""


def test_listeners_see_transitions(registry: TaskRegistry) -> None:
    seen: list[tuple[str, TaskStatus | None, TaskStatus]] = []
    registry.add_listener(lambda tid, old, new: seen.append((tid, old, new)))

    registry.initialize("a", _task("a"))
    registry.set_running("a")
    registry.safe_set_state("a", TaskStatus.SUCCESS)

    assert seen == [
        ("a", None, TaskStatus.PENDING),
        ("a", TaskStatus.PENDING, TaskStatus.RUNNING),
        ("a", TaskStatus.RUNNING, TaskStatus.SUCCESS),
    ]


def test_elapsed_uses_injected_clock() -> None:
    now = [100.0]
    registry = TaskRegistry(clock=lambda: now[0])
    registry.initialize("a", _task("a"))
    registry.set_running("a")
    now[0] = 102.5
    registry.safe_set_state("a", TaskStatus.SUCCESS)
    now[0] = 200.0

    assert registry.get("a").elapsed(registry.now()) == 2.5


def test_writes_from_an_earlier_run_are_dropped(registry: TaskRegistry) -> None:
    registry.initialize("a", _task("a"))
    first_run = registry.run_context()

    registry.clear()
    registry.initialize("a", _task("a"))

    assert first_run.run(registry.is_stale)
    assert first_run.run(registry.set_running, "a") is False
    first_run.run(registry.append_output, "a", "late output")
    assert first_run.run(registry.safe_set_state, "a", TaskStatus.FAILED) is False
    assert registry.status_of("a") == TaskStatus.PENDING
    assert registry.get("a").output == ""

    current_run = registry.run_context()
    assert not current_run.run(registry.is_stale)
    assert current_run.run(registry.set_running, "a")
    assert registry.status_of("a") == TaskStatus.RUNNING
