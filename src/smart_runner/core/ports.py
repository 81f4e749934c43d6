# src/smart_runner/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The runner depends on Protocols instead of concrete implementations.
This keeps the UI layer / LLM providers swappable and makes testing easier.
"""

import logging
from collections.abc import Iterable
from typing import Protocol

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """
    User-facing warnings and errors (empty command, unknown callback target, ...).

    `level` is a stdlib logging level. The host decides how to surface it
    (console line, editor notification, ...).
    """

    def notify(self, message: str, level: int = logging.WARNING) -> None: ...


class LLMClient(Protocol):
    """Streaming chat completion client (OpenAI/OpenRouter-compatible)."""

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]: ...


class LoggingNotifier:
    """Default notifier: user-facing messages simply go to the log."""

    def notify(self, message: str, level: int = logging.WARNING) -> None:
        logger.log(level, "%s", message)
