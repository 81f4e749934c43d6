# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from smart_runner.config import Settings, get_settings, reload_settings

_VARS = [
    "SMART_RUNNER_DEBUG",
    "SMART_RUNNER_LOG_LEVEL",
    "SMART_RUNNER_POLL_INTERVAL_SECONDS",
    "SMART_RUNNER_KILL_GRACE_SECONDS",
    "SMART_RUNNER_DEFAULT_TIMEOUT_SECONDS",
    "SMART_RUNNER_HIDE_SKIPPED",
    "SMART_RUNNER_DATA_DIR",
    "SMART_RUNNER_LLM_API_KEY",
    "SMART_RUNNER_LLM_MODELS",
    "OPENROUTER_API_KEY",
    "OPENAI_API_KEY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    s = Settings.from_env()

    assert s.poll_interval_seconds == 0.5
    assert s.kill_grace_seconds == 1.0
    assert s.default_timeout_seconds is None
    assert s.hide_skipped is False
    assert s.log_level == "INFO"
    assert s.llm_api_key is None
    assert s.task_file_name == ".smart-runner.py"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SMART_RUNNER_DEBUG", "yes")
    monkeypatch.setenv("SMART_RUNNER_POLL_INTERVAL_SECONDS", "0.1")
    monkeypatch.setenv("SMART_RUNNER_DEFAULT_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("SMART_RUNNER_HIDE_SKIPPED", "1")
    monkeypatch.setenv("SMART_RUNNER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SMART_RUNNER_LLM_MODELS", "a/one, b/two")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    s = Settings.from_env()

    assert s.debug is True
    assert s.log_level == "DEBUG"
    assert s.poll_interval_seconds == 0.1
    assert s.default_timeout_seconds == 30.0
    assert s.hide_skipped is True
    assert s.data_dir == tmp_path
    assert s.llm_models == ["a/one", "b/two"]
    assert s.llm_api_key == "sk-test"


def test_invalid_values_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMART_RUNNER_POLL_INTERVAL_SECONDS", "fast")
    monkeypatch.setenv("SMART_RUNNER_DEFAULT_TIMEOUT_SECONDS", "0")
    monkeypatch.setenv("SMART_RUNNER_KILL_GRACE_SECONDS", "-3")

    s = Settings.from_env()

    assert s.poll_interval_seconds == 0.5
    assert s.default_timeout_seconds is None
    assert s.kill_grace_seconds == 0.0


def test_reload_settings_replaces_cached_instance(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SMART_RUNNER_HIDE_SKIPPED", "true")
    try:
        reloaded = reload_settings()
        assert reloaded.hide_skipped is True
        assert get_settings() is reloaded
    finally:
        monkeypatch.delenv("SMART_RUNNER_HIDE_SKIPPED")
        reload_settings()
