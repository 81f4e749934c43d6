# src/smart_runner/cli/render.py

"""
Console status renderer.

On a terminal the status block is redrawn in place (ANSI cursor-up). Otherwise
only status changes are printed, one line each, so CI logs stay readable.
"""

from __future__ import annotations

import sys
from collections.abc import Sequence
from typing import TextIO

from ..tasks.snapshot import RunHeadline, TaskSnapshot, headline
from ..tasks.task_models import TaskStatus

SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

ICONS = {
    TaskStatus.PENDING: "○",
    TaskStatus.WAITING: "◔",
    TaskStatus.SUCCESS: "✓",
    TaskStatus.FAILED: "✗",
    TaskStatus.SKIPPED: "↷",
    TaskStatus.ABORTED: "⊘",
}

_STATUS_TEXT = {
    TaskStatus.PENDING: "Pending",
    TaskStatus.WAITING: "Waiting for dependencies...",
    TaskStatus.RUNNING: "Running...",
    TaskStatus.SUCCESS: "Success",
    TaskStatus.FAILED: "Failed",
    TaskStatus.SKIPPED: "Skipped",
    TaskStatus.ABORTED: "Aborted",
}

_TIMED = {TaskStatus.SUCCESS, TaskStatus.FAILED, TaskStatus.ABORTED}


def format_task_line(snap: TaskSnapshot, frame: int = 0) -> str:
    """One status line: indentation for callbacks, icon + label, status, elapsed."""
    status = snap.status
    if status == TaskStatus.RUNNING:
        marker = SPINNER_FRAMES[frame % len(SPINNER_FRAMES)]
    else:
        marker = ICONS.get(status, "?")

    text = f"{marker} {_STATUS_TEXT[status]}"
    if status in _TIMED or status == TaskStatus.RUNNING:
        text += f" ({snap.elapsed:.2f}s)"

    name = f"{snap.icon} {snap.label}" if snap.icon else snap.label
    prefix = ("  " * (snap.depth - 1) + "└ ") if snap.depth > 0 else ""
    return f"{prefix}{name} {text}"


def format_output(output: str, indent: str = "    ") -> list[str]:
    if not output:
        return [f"{indent}No output available"]
    lines = output.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [indent + line for line in lines]


def format_headline(snapshot: Sequence[TaskSnapshot], elapsed: float, frame: int = 0) -> str:
    state = headline(s.state for s in snapshot)
    if state == RunHeadline.RUNNING:
        running = sum(1 for s in snapshot if s.status == TaskStatus.RUNNING)
        noun = "task" if running == 1 else "tasks"
        return f"{SPINNER_FRAMES[frame % len(SPINNER_FRAMES)]} Running {running} {noun}... ({elapsed:.2f}s)"
    if state == RunHeadline.FAILED:
        return f"{ICONS[TaskStatus.FAILED]} Failed ({elapsed:.2f}s)"
    return f"{ICONS[TaskStatus.SUCCESS]} Completed ({elapsed:.2f}s)"


class ConsoleRenderer:
    def __init__(self, stream: TextIO | None = None, *, live: bool | None = None) -> None:
        self.stream = stream or sys.stdout
        self.live = self.stream.isatty() if live is None else live
        self._frame = 0
        self._drawn_lines = 0
        self._last_status: dict[str, TaskStatus] = {}

    def render(self, snapshot: Sequence[TaskSnapshot], elapsed: float = 0.0) -> None:
        if self.live:
            self._redraw(snapshot, elapsed)
        else:
            self._print_changes(snapshot)
        self._frame += 1

    def _redraw(self, snapshot: Sequence[TaskSnapshot], elapsed: float) -> None:
        lines = [format_headline(snapshot, elapsed, self._frame)]
        lines.extend(format_task_line(s, self._frame) for s in snapshot)

        out = self.stream
        if self._drawn_lines:
            out.write(f"\x1b[{self._drawn_lines}F")
        for line in lines:
            out.write("\x1b[2K" + line + "\n")
        out.flush()
        self._drawn_lines = len(lines)

    def _print_changes(self, snapshot: Sequence[TaskSnapshot]) -> None:
        for s in snapshot:
            if self._last_status.get(s.task_id) == s.status:
                continue
            self._last_status[s.task_id] = s.status
            if s.status in (TaskStatus.PENDING, TaskStatus.WAITING):
                continue
            self.stream.write(format_task_line(s) + "\n")
        self.stream.flush()

    def finish(self, snapshot: Sequence[TaskSnapshot], elapsed: float, blocked: dict[str, list[str]]) -> None:
        """Final frame plus the output of every task that did not succeed."""
        self.render(snapshot, elapsed)
        if not self.live:
            self.stream.write(format_headline(snapshot, elapsed) + "\n")

        for s in snapshot:
            if s.status in (TaskStatus.FAILED, TaskStatus.ABORTED):
                self.stream.write(f"\n{s.label} output:\n")
                self.stream.write("\n".join(format_output(s.state.output)) + "\n")

        for task_id, deps in sorted(blocked.items()):
            self.stream.write(f"\n{task_id} did not run: blocked by {', '.join(deps)}\n")
        self.stream.flush()
