# src/smart_runner/tasks/processes.py

from __future__ import annotations

"""
Process manager.

Runs shell commands for tasks, streams their combined stdout/stderr into the
registry while they run, and keeps a table of live processes so they can be
killed. It never writes task status itself: the executor decides what an exit
code means for the task (a command may be one step of a sequence).
"""

import asyncio
import codecs
import logging
import os
import signal
from collections.abc import Mapping

from .task_models import TaskResult, TaskStatus
from .task_store import TaskRegistry

logger = logging.getLogger(__name__)

ABORT_NOTE = "[Process aborted by user]"
TIMEOUT_EXIT_CODE = 124
_READ_CHUNK = 4096


def timeout_note(seconds: float) -> str:
    return f"[Process timed out after {seconds:g}s]"


class ProcessManager:
    def __init__(self, registry: TaskRegistry, *, kill_grace_seconds: float = 1.0) -> None:
        self._registry = registry
        self._active: dict[str, asyncio.subprocess.Process] = {}
        self._kill_grace = max(0.0, float(kill_grace_seconds))

    def active_count(self) -> int:
        return len(self._active)

    def has_active(self, task_id: str) -> bool:
        return task_id in self._active

    async def run_command(
        self,
        task_id: str,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
        timeout_label: float | None = None,
    ) -> TaskResult:
        """
        Run `command` through the shell under `task_id` and wait for it.

        Output chunks are appended to the task's registry output as they arrive.
        The returned TaskResult carries the whole task output plus this command's
        own stdout/stderr. On timeout the process is terminated and the result has
        timed_out=True and exit code 124.

        `timeout_label` is the limit named in the timeout note when `timeout` is
        only what remains of a longer budget.
        """
        full_env = None
        if env:
            full_env = {**os.environ, **{str(k): str(v) for k, v in env.items()}}

        logger.debug("Task %s: exec %r (cwd=%s, timeout=%s)", task_id, command, cwd, timeout)

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=full_env,
                cwd=cwd,
                # Own process group so kill reaches the shell's children too.
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            message = f"Failed to start command: {e}"
            logger.warning("Task %s: %s", task_id, message)
            self._registry.append_output(task_id, message + "\n")
            return TaskResult(
                success=False,
                exit_code=127,
                output=self._output_of(task_id),
                stderr=message,
                error_message=message,
            )

        if self._registry.is_stale() or self._registry.is_state(task_id, TaskStatus.ABORTED):
            # kill_all() ran while the process was starting.
            self._terminate(task_id, proc)
            await proc.communicate()
            return TaskResult(success=False, exit_code=proc.returncode, output=self._output_of(task_id))

        self._active[task_id] = proc
        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        readers = [
            asyncio.create_task(self._pump(task_id, proc.stdout, stdout_parts)),
            asyncio.create_task(self._pump(task_id, proc.stderr, stderr_parts)),
        ]
        waiter = asyncio.create_task(proc.wait())
        timed_out = False

        try:
            done, _ = await asyncio.wait({waiter}, timeout=timeout)
            if waiter not in done:
                timed_out = True
                note = timeout_note(timeout if timeout_label is None else timeout_label)
                logger.info("Task %s: %s", task_id, note)
                self._registry.append_output(task_id, "\n" + note + "\n")
                self._terminate(task_id, proc)
                await waiter
            await asyncio.gather(*readers)
        except asyncio.CancelledError:
            self._terminate(task_id, proc)
            for reader in readers:
                reader.cancel()
            waiter.cancel()
            raise
        finally:
            # kill_all() may already have dropped (or replaced) the entry.
            if self._active.get(task_id) is proc:
                del self._active[task_id]

        exit_code = TIMEOUT_EXIT_CODE if timed_out else proc.returncode
        logger.debug("Task %s: %r exited with %s", task_id, command, proc.returncode)
        return TaskResult(
            success=exit_code == 0,
            exit_code=exit_code,
            output=self._output_of(task_id),
            stdout="".join(stdout_parts),
            stderr="".join(stderr_parts),
            timed_out=timed_out,
        )

    async def _pump(
        self,
        task_id: str,
        stream: asyncio.StreamReader | None,
        sink: list[str],
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    sink.append(tail)
                    self._registry.append_output(task_id, tail)
                return
            text = decoder.decode(chunk)
            if text:
                sink.append(text)
                self._registry.append_output(task_id, text)

    def expire(self, task_id: str, timeout: float) -> TaskResult:
        """Timed-out result for a command that never started because the budget ran out."""
        note = timeout_note(timeout)
        logger.info("Task %s: %s", task_id, note)
        self._registry.append_output(task_id, "\n" + note + "\n")
        return TaskResult(
            success=False,
            exit_code=TIMEOUT_EXIT_CODE,
            output=self._output_of(task_id),
            timed_out=True,
        )

    def _output_of(self, task_id: str) -> str:
        state = self._registry.get(task_id)
        return state.output if state is not None else ""

    def kill_all(self, note: str = ABORT_NOTE) -> list[str]:
        """
        Terminate every tracked process and mark its task aborted immediately.

        SIGTERM goes out now; SIGKILL follows after the grace period if the process
        is still alive. The status flip does not wait for the OS.
        """
        killed: list[str] = []
        for task_id, proc in list(self._active.items()):
            self._terminate(task_id, proc)
            self._registry.set_aborted(task_id, note)
            killed.append(task_id)

        self._active.clear()
        if killed:
            logger.info("Killed %d process(es): %s", len(killed), ", ".join(killed))
        return killed

    def _terminate(self, task_id: str, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        self._signal(task_id, proc, force=False)
        loop = asyncio.get_running_loop()
        loop.call_later(self._kill_grace, self._force_kill, task_id, proc)

    def _force_kill(self, task_id: str, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            logger.debug("Task %s: still alive after %.1fs, sending SIGKILL", task_id, self._kill_grace)
            self._signal(task_id, proc, force=True)

    @staticmethod
    def _signal(task_id: str, proc: asyncio.subprocess.Process, *, force: bool) -> None:
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL if force else signal.SIGTERM)
            elif force:
                proc.kill()
            else:
                proc.terminate()
        except ProcessLookupError:
            pass
        except OSError:
            logger.warning("Task %s: failed to signal pid=%s", task_id, proc.pid, exc_info=True)
