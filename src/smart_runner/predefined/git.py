# src/smart_runner/predefined/git.py

from __future__ import annotations

"""
Git helpers and git-flavoured predefined tasks.

`has_staged_changes()` and friends are synchronous on purpose: they are meant
to be used as `when` predicates, which are evaluated once at seed time.
"""

import asyncio
import logging
import re
import subprocess

from ..tasks.task_models import Failed, TaskDefinition

logger = logging.getLogger(__name__)

_MAIN_BRANCHES = {"main", "master", "develop"}
_TICKET_NUM_RE = re.compile(r"^(\d+)-?")
_JIRA_RE = re.compile(r"^([A-Z]+-\d+)-?")


def _git(*args: str, cwd: str | None = None) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=False,
    )


def has_staged_changes(cwd: str | None = None) -> bool:
    """True when the index differs from HEAD. Outside a repository: False."""
    try:
        proc = _git("diff", "--cached", "--quiet", cwd=cwd)
    except OSError:
        logger.warning("git is not available")
        return False
    # --quiet: 1 means "there are differences", anything else >1 is an error.
    if proc.returncode > 1:
        logger.warning("git diff --cached failed: %s", proc.stderr.strip())
        return False
    return proc.returncode == 1


def current_branch(cwd: str | None = None) -> str | None:
    try:
        proc = _git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    except OSError:
        return None
    if proc.returncode != 0:
        logger.warning("Failed to get current git branch: %s", proc.stderr.strip())
        return None
    return proc.stdout.strip() or None


def commit_scope(branch: str | None) -> str:
    """
    Derive a conventional-commit scope from a branch name.

    - main/master/develop (or no branch) -> ""
    - feature/login -> "login"
    - feature/123-login -> "#123"
    - fix/ABC-42-crash -> "ABC-42"
    - feature/foo-bar -> "#foo"
    """
    if not branch or branch in _MAIN_BRANCHES:
        return ""

    _, sep, scope = branch.partition("/")
    if not sep or not scope:
        return ""

    if "-" in scope:
        m = _TICKET_NUM_RE.match(scope)
        if m:
            return "#" + m.group(1)
        m = _JIRA_RE.match(scope)
        if m:
            return m.group(1)
        return "#" + scope.split("-", 1)[0]
    return scope


async def read_staged_diff(cwd: str | None = None) -> str:
    """`git diff --staged`, read without touching any task output. "" on error."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            "diff",
            "--staged",
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError:
        logger.warning("git is not available")
        return ""

    out, err = await proc.communicate()
    if proc.returncode != 0:
        logger.warning("Failed to get staged changes: %s", err.decode("utf-8", "replace").strip())
        return ""
    return out.decode("utf-8", "replace")


GIT_ADD = TaskDefinition(
    id="git:add",
    label="Git add",
    icon="",
    command="git add -u",
)

GIT_STAGED_CHECK = TaskDefinition(
    id="git:staged",
    label="Staged changes",
    icon="",
    handler=lambda ctx: has_staged_changes(ctx.task.cwd or ctx.config.cwd) or Failed("Nothing staged"),
)
