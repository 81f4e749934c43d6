# tests/test_predefined.py

from __future__ import annotations

import asyncio
import shutil
import subprocess
from pathlib import Path

import pytest

from smart_runner.predefined import default_templates
from smart_runner.predefined.git import commit_scope, has_staged_changes
from smart_runner.predefined.llm_commit import (
    NO_STAGED_CHANGES,
    extract_commit_message,
    prepend_to_file,
)
from smart_runner.tasks.task_api import TaskRunner
from smart_runner.tasks.task_models import RunConfig, TaskStatus

from .fakes import FakeLLMClient

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.mark.parametrize(
    ("branch", "scope"),
    [
        (None, ""),
        ("main", ""),
        ("develop", ""),
        ("hotfix", ""),
        ("feature/login", "login"),
        ("feature/123-login-form", "#123"),
        ("fix/ABC-42-crash", "ABC-42"),
        ("feature/foo-bar", "#foo"),
    ],
)
def test_commit_scope(branch: str | None, scope: str) -> None:
    assert commit_scope(branch) == scope


def test_extract_commit_message() -> None:
    fenced = "Here you go:\n```gitcommit\nfeat(ui): add button\n\nBody text.\n```\nthanks"
    assert extract_commit_message(fenced) == "feat(ui): add button\n\nBody text."
    assert extract_commit_message("```\nfix: typo\n```") == "fix: typo"
    assert extract_commit_message("chore: bump") == "chore: bump"


def test_prepend_to_file_keeps_existing_content(tmp_path: Path) -> None:
    path = tmp_path / "COMMIT_EDITMSG"
    path.write_text("# Please enter the commit message\n", "utf-8")

    prepend_to_file(path, "feat: add x\n")

    assert path.read_text("utf-8") == "feat: add x\n# Please enter the commit message\n"


@pytest.fixture()
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    subprocess.run(["git", "init", "-q"], cwd=root, check=True)
    (root / "app.py").write_text("print('hi')\n", "utf-8")
    return root


def _stage(repo: Path) -> None:
    subprocess.run(["git", "add", "app.py"], cwd=repo, check=True)


def _runner(settings, notifier, repo: Path, llm: FakeLLMClient, **options) -> TaskRunner:
    return TaskRunner(
        settings=settings,
        templates=default_templates(llm),
        notifier=notifier,
        config=RunConfig(cwd=str(repo), options=options),
    )


@needs_git
def test_has_staged_changes(repo: Path) -> None:
    assert has_staged_changes(str(repo)) is False
    _stage(repo)
    assert has_staged_changes(str(repo)) is True


@needs_git
@pytest.mark.asyncio
async def test_commit_message_written_to_file(settings, notifier, repo: Path) -> None:
    _stage(repo)
    message_file = repo / "COMMIT_EDITMSG"
    llm = FakeLLMClient("```gitcommit\nfeat: add greeting script\n```")
    runner = _runner(settings, notifier, repo, llm, message_file=str(message_file))

    summary = await runner.run({"llm:commit-message": True})

    assert summary.statuses == {"llm:commit-message": TaskStatus.SUCCESS}
    assert message_file.read_text("utf-8") == "feat: add greeting script\n"
    messages, system_prompt = llm.calls[0]
    assert "app.py" in messages[0]["content"]
    assert "conventional commits" in system_prompt


@needs_git
@pytest.mark.asyncio
async def test_commit_message_skipped_without_staged_changes(settings, notifier, repo: Path) -> None:
    llm = FakeLLMClient()
    runner = _runner(settings, notifier, repo, llm)

    summary = await runner.run({"llm:commit-message": True})

    assert summary.statuses == {"llm:commit-message": TaskStatus.SKIPPED}
    assert NO_STAGED_CHANGES in runner.registry.get("llm:commit-message").output
    assert llm.calls == []


@needs_git
@pytest.mark.asyncio
async def test_analyze_fails_on_quota_and_llm_errors(settings, notifier, repo: Path) -> None:
    _stage(repo)

    runner = _runner(settings, notifier, repo, FakeLLMClient("Sorry: quota exceeded"))
    summary = await runner.run({"llm:analyze": True})
    assert summary.statuses == {"llm:analyze": TaskStatus.FAILED}
    assert "LLM quota exceeded" in runner.registry.get("llm:analyze").output

    runner = _runner(settings, notifier, repo, FakeLLMClient(error=RuntimeError("service down")))
    summary = await runner.run({"llm:analyze": True})
    assert summary.statuses == {"llm:analyze": TaskStatus.FAILED}
    assert "service down" in runner.registry.get("llm:analyze").output


@needs_git
@pytest.mark.asyncio
async def test_git_add_restages_tracked_files(settings, notifier, repo: Path) -> None:
    runner = _runner(settings, notifier, repo, FakeLLMClient())

    summary = await runner.run({"git:staged": True})
    assert summary.statuses == {"git:staged": TaskStatus.FAILED}

    _stage(repo)
    (repo / "app.py").write_text("print('changed')\n", "utf-8")
    summary = await runner.run({"git:add": True})

    assert summary.statuses == {"git:add": TaskStatus.SUCCESS}
    staged = subprocess.run(
        ["git", "diff", "--cached"], cwd=repo, capture_output=True, text=True, check=True
    ).stdout
    assert "changed" in staged


@needs_git
@pytest.mark.asyncio
async def test_commit_message_fails_when_message_file_is_unreadable(settings, notifier, repo: Path) -> None:
    _stage(repo)
    message_file = repo / "COMMIT_EDITMSG"
    message_file.write_bytes(b"\xff\xfe not utf-8\n")
    llm = FakeLLMClient("```gitcommit\nfeat: add greeting script\n```")
    runner = _runner(settings, notifier, repo, llm, message_file=str(message_file))

    summary = await asyncio.wait_for(runner.run({"llm:commit-message": True}), timeout=10)

    assert summary.statuses == {"llm:commit-message": TaskStatus.FAILED}
    assert runner.is_batch_complete()
    assert "UnicodeDecodeError" in runner.registry.get("llm:commit-message").output
