# src/smart_runner/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Task definitions themselves are NOT settings: they come from task files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "SMART_RUNNER"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    debug: bool
    data_dir: Path

    # ---- Scheduling ----
    poll_interval_seconds: float
    kill_grace_seconds: float
    default_timeout_seconds: float | None

    # ---- Status rendering ----
    refresh_interval_seconds: float
    hide_skipped: bool

    # ---- Task file discovery ----
    task_file_name: str

    # ---- LLM (OpenAI-compatible) ----
    llm_api_key: str | None
    llm_base_url: str
    llm_models: list[str]
    llm_extra_headers: dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "smart-runner")
        debug = _env_bool(_k("DEBUG"), False)
        log_level = _env(_k("LOG_LEVEL"), "DEBUG" if debug else "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/smart-runner"))

        # Scheduling knobs. Values below the floor make the poll loop spin.
        poll_interval = _env_float(_k("POLL_INTERVAL_SECONDS"), 0.5) or 0.5
        kill_grace = _env_float(_k("KILL_GRACE_SECONDS"), 1.0)
        default_timeout = _env_float(_k("DEFAULT_TIMEOUT_SECONDS"), None)
        if default_timeout is not None and default_timeout <= 0:
            default_timeout = None

        refresh_interval = _env_float(_k("REFRESH_INTERVAL_SECONDS"), 0.1) or 0.1
        hide_skipped = _env_bool(_k("HIDE_SKIPPED"), False)

        task_file_name = _env(_k("TASK_FILE"), ".smart-runner.py")

        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENROUTER_API_KEY", "OPENAI_API_KEY", default=None)
        llm_base_url = _env(_k("LLM_BASE_URL"), "https://openrouter.ai/api/v1")
        llm_models = _env_list(_k("LLM_MODELS"), ["openai/gpt-4o-mini"])

        llm_extra_headers = {
            "HTTP-Referer": _env(_k("HTTP_REFERER"), "https://example.com"),
            "X-Title": _env(_k("APP_TITLE"), app_name),
        }

        return Settings(
            app_name=app_name,
            log_level=log_level,
            debug=debug,
            data_dir=data_dir,
            poll_interval_seconds=max(0.01, float(poll_interval)),
            kill_grace_seconds=max(0.0, float(kill_grace if kill_grace is not None else 1.0)),
            default_timeout_seconds=default_timeout,
            refresh_interval_seconds=max(0.02, float(refresh_interval)),
            hide_skipped=hide_skipped,
            task_file_name=task_file_name,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_models=llm_models,
            llm_extra_headers=llm_extra_headers,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS


def reload_settings() -> Settings:
    """Re-read the environment (tests and long-lived hosts that change env at runtime)."""
    global SETTINGS
    SETTINGS = Settings.from_env()
    return SETTINGS
