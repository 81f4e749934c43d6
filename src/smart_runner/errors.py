# src/smart_runner/errors.py

from __future__ import annotations


class SmartRunnerError(Exception):
    """Base class for errors raised by smart-runner."""


class TaskDefinitionError(SmartRunnerError):
    """A task definition is malformed (missing id, unknown field types, ...)."""


class TemplateNotFoundError(SmartRunnerError):
    """A predefined task was referenced by id but is not registered."""


class TaskFileError(SmartRunnerError):
    """A task file could not be loaded or does not expose TASKS."""


class LLMNotConfiguredError(SmartRunnerError):
    """The LLM client is missing its API key, base URL or model list."""
