# src/smart_runner/predefined/llm_commit.py

from __future__ import annotations

"""
LLM-backed predefined tasks: commit message generation and staged-diff review.

Both handlers return StillRunning right away and finish the task later from a
background asyncio task (the LLM call itself runs in a worker thread). If the
run is killed meanwhile, the late succeed()/fail() is ignored by the registry.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any

from ..core.ports import ChatMessage, LLMClient
from ..llm.client import friendly_llm_error_message
from ..tasks.executor import TaskContext
from ..tasks.task_models import StillRunning, TaskDefinition
from .git import commit_scope, current_branch, read_staged_diff

logger = logging.getLogger(__name__)

COMMIT_MESSAGE_PROMPT = """\
Write a conventional commits style (https://www.conventionalcommits.org/en/v1.0.0/) commit message for the staged changes below. Create only the code block without further explanations.

**Requirements:**

- Title: under 50 characters, imperative mood. It must complete the sentence: "If applied, this commit will <commit message>".
- Body: wrap at 72 characters.
- Include essential information only.
- Format as a `gitcommit` code block.
- Use `{scope}` as the scope. If the scope is empty, skip it. If it includes a `#`, keep the `#` in the scope.

Use the following example only to understand the format, not its content.

```gitcommit
feat(scope): add login functionality

Implement user authentication flow with proper validation
and error handling. Connects to the auth API endpoint.
```
Only create the commit message. Do not explain anything!
"""

ANALYZE_PROMPT = """\
Analyze the staged code changes below and provide a concise summary of:

1. Potential issues or bugs (debug statements, commented code, obvious errors)
2. Security concerns (hardcoded credentials, insecure practices)
3. Performance considerations
4. Code quality observations (duplicated code, complex logic)

Format your response as a brief, actionable summary with bullet points for each category.
Keep your response under 300 words and focus only on significant findings.
If there are no issues in a category, simply state "No issues found".
"""

NO_STAGED_CHANGES = "No staged changes"

_QUOTA_RE = re.compile(r"[Qq]uota (exceeded|extended)")
_GITCOMMIT_BLOCK_RE = re.compile(r"```gitcommit\n(.*?)\n```", re.DOTALL)
_FENCE_OPEN_RE = re.compile(r"```\w*\n")

# Background jobs must stay referenced until they finish.
_JOBS: set[asyncio.Task[Any]] = set()


def extract_commit_message(response: str) -> str:
    """The ```gitcommit block if present, otherwise the response without code fences."""
    m = _GITCOMMIT_BLOCK_RE.search(response)
    if m:
        return m.group(1).strip()
    return _FENCE_OPEN_RE.sub("", response).replace("```", "").strip()


def prepend_to_file(path: str | Path, message: str) -> None:
    """Put `message` in front of what the file holds (git's template comments stay below)."""
    path = Path(path)
    existing = path.read_text("utf-8") if path.exists() else ""
    path.write_text(message.rstrip("\n") + "\n" + existing, "utf-8")


def _collect(llm: LLMClient, messages: list[ChatMessage], system_prompt: str) -> str:
    return "".join(llm.stream_chat(messages, system_prompt))


async def _ask(ctx: TaskContext, llm: LLMClient, system_prompt: str, diff: str) -> str | None:
    """Run the LLM call off-loop. Fails the task and returns None on error."""
    messages: list[ChatMessage] = [{"role": "user", "content": diff}]
    try:
        response = await asyncio.to_thread(_collect, llm, messages, system_prompt)
    except Exception as e:
        logger.exception("Task %s: LLM request failed", ctx.task.id)
        ctx.fail(friendly_llm_error_message(e))
        return None

    if not response.strip():
        ctx.fail("LLM returned an empty response")
        return None
    if _QUOTA_RE.search(response):
        ctx.fail("LLM quota exceeded")
        return None
    return response


async def _run_job(ctx: TaskContext, coro: Any) -> None:
    try:
        await coro
    except Exception as e:
        # Nothing else finishes the task once the handler has returned.
        logger.exception("Task %s: background job crashed", ctx.task.id)
        ctx.fail(f"{type(e).__name__}: {e}")


def _spawn(ctx: TaskContext, coro: Any) -> StillRunning:
    job = asyncio.create_task(_run_job(ctx, coro), name=f"smart-runner:{ctx.task.id}:llm")
    _JOBS.add(job)
    job.add_done_callback(_JOBS.discard)
    return StillRunning()


async def _staged_diff_or_skip(ctx: TaskContext) -> str | None:
    diff = await read_staged_diff(ctx.task.cwd or ctx.config.cwd)
    if not diff.strip():
        ctx.skip(NO_STAGED_CHANGES)
        return None
    return diff


async def _generate_commit_message(ctx: TaskContext, llm: LLMClient) -> None:
    diff = await _staged_diff_or_skip(ctx)
    if diff is None:
        return

    branch = await asyncio.to_thread(current_branch, ctx.task.cwd or ctx.config.cwd)
    scope = commit_scope(branch)
    response = await _ask(ctx, llm, COMMIT_MESSAGE_PROMPT.format(scope=scope), diff)
    if response is None:
        return

    message = extract_commit_message(response)
    ctx.append_output(message + "\n")

    message_file = ctx.config.get("message_file")
    if message_file:
        try:
            prepend_to_file(message_file, message)
        except OSError as e:
            logger.error("Task %s: cannot write %s: %s", ctx.task.id, message_file, e)
            ctx.fail(f"Cannot write commit message file: {e}")
            return
    ctx.succeed()


async def _analyze_staged(ctx: TaskContext, llm: LLMClient) -> None:
    diff = await _staged_diff_or_skip(ctx)
    if diff is None:
        return

    response = await _ask(ctx, llm, ANALYZE_PROMPT, diff)
    if response is None:
        return
    ctx.append_output(response.strip() + "\n")
    ctx.succeed()


def commit_message_task(llm: LLMClient) -> TaskDefinition:
    return TaskDefinition(
        id="llm:commit-message",
        label="Generate Commit Message",
        icon="",
        handler=lambda ctx: _spawn(ctx, _generate_commit_message(ctx, llm)),
    )


def analyze_task(llm: LLMClient) -> TaskDefinition:
    return TaskDefinition(
        id="llm:analyze",
        label="Analyze Staged Changes",
        icon="󰟌",
        handler=lambda ctx: _spawn(ctx, _analyze_staged(ctx, llm)),
    )
