"""
Built-in predefined tasks.

Templates only run when a task file enables them (`"git:add": True`), extends
them, or references them from a callback.
"""

from __future__ import annotations

from ..core.ports import LLMClient
from ..llm.offline import OfflineLLMClient
from ..tasks.templates import TemplateRegistry
from .git import GIT_ADD, GIT_STAGED_CHECK
from .llm_commit import analyze_task, commit_message_task


def default_templates(llm: LLMClient | None = None) -> TemplateRegistry:
    llm = llm or OfflineLLMClient()
    registry = TemplateRegistry()
    for template in (GIT_ADD, GIT_STAGED_CHECK, commit_message_task(llm), analyze_task(llm)):
        registry.register(template.id, template)
    return registry
