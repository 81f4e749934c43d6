# src/smart_runner/llm/offline.py

from __future__ import annotations

from collections.abc import Iterable

from ..core.ports import ChatMessage


class OfflineLLMClient:
    """
    Offline deterministic LLM client used when no external API is configured.

    Behavior:
    - Commit message prompts -> a placeholder `gitcommit` block
    - Analysis prompts -> a fixed "not analyzed" summary
    """

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        sp = (system_prompt or "").lower()

        if "commit message" in sp:
            yield "```gitcommit\nchore: update files\n\nOffline mode: no LLM is configured.\n```"
            return

        yield (
            "Offline mode: no external LLM is configured.\n"
            "Set SMART_RUNNER_LLM_API_KEY (and SMART_RUNNER_LLM_MODELS) to enable analysis."
        )
