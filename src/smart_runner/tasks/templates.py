# src/smart_runner/tasks/templates.py

from __future__ import annotations

"""
Predefined tasks (templates) and batch resolution.

Templates are not run by default. A template becomes a concrete task when the
batch enables it (`"git:add": True`), when another task extends it, or when a
callback references its id.
"""

import copy
import dataclasses
import logging
from collections.abc import Mapping
from typing import Any

from ..core.ports import LoggingNotifier, Notifier
from ..errors import TaskDefinitionError, TemplateNotFoundError
from .task_models import TaskDefinition

logger = logging.getLogger(__name__)

RawTask = TaskDefinition | Mapping[str, Any] | bool

_DEFAULTS = {f.name: f.default for f in dataclasses.fields(TaskDefinition) if f.name != "id"}


def _as_definition(task_id: str, raw: TaskDefinition | Mapping[str, Any]) -> TaskDefinition:
    if isinstance(raw, TaskDefinition):
        return raw if raw.id == task_id else dataclasses.replace(raw, id=task_id)
    if isinstance(raw, Mapping):
        return TaskDefinition.from_mapping(task_id, raw)
    raise TaskDefinitionError(f"Task {task_id}: expected a mapping or TaskDefinition")


class TemplateRegistry:
    def __init__(self, templates: Mapping[str, TaskDefinition | Mapping[str, Any]] | None = None) -> None:
        self._templates: dict[str, TaskDefinition] = {}
        for task_id, template in (templates or {}).items():
            self.register(task_id, template)

    def register(self, task_id: str, template: TaskDefinition | Mapping[str, Any]) -> TaskDefinition:
        """Register (or replace) a template; its id is bound to `task_id`."""
        definition = _as_definition(task_id, template)
        self._templates[task_id] = definition
        return definition

    def update(self, templates: Mapping[str, TaskDefinition | Mapping[str, Any]]) -> None:
        for task_id, template in templates.items():
            self.register(task_id, template)

    def get(self, task_id: str) -> TaskDefinition | None:
        """Fresh deep copy of the template bound to `task_id`, or None."""
        template = self._templates.get(task_id)
        if template is None:
            return None
        return copy.deepcopy(template)

    def require(self, task_id: str) -> TaskDefinition:
        template = self.get(task_id)
        if template is None:
            raise TemplateNotFoundError(f"Unknown predefined task: {task_id}")
        return template

    def ids(self) -> list[str]:
        return sorted(self._templates)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)


def _explicit_fields(raw: TaskDefinition | Mapping[str, Any]) -> dict[str, Any]:
    """Fields the overriding task actually sets (mapping keys, or non-default dataclass fields)."""
    if isinstance(raw, Mapping):
        probe = _as_definition(str(raw.get("id") or "_"), raw)
        keys = {"fn" if k in ("function_body", "function") else k for k in raw}
        return {k: getattr(probe, k) for k in keys if k not in ("id", "extend")}

    out = {}
    for name, default in _DEFAULTS.items():
        if name == "extend":
            continue
        value = getattr(raw, name)
        if value != default:
            out[name] = value
    return out


def merge_definitions(base: TaskDefinition, override: TaskDefinition | Mapping[str, Any], task_id: str) -> TaskDefinition:
    """Override wins field by field; env mappings are merged key by key."""
    fields = _explicit_fields(override)
    if "env" in fields and base.env and fields["env"] is not None:
        fields["env"] = {**dict(base.env), **dict(fields["env"])}
    return dataclasses.replace(base, id=task_id, extend=None, **fields)


def resolve_batch(
    raw_tasks: Mapping[str, RawTask],
    templates: TemplateRegistry | None = None,
    *,
    notifier: Notifier | None = None,
) -> dict[str, TaskDefinition]:
    """
    Turn the config-layer mapping into concrete task definitions.

    - False disables a task.
    - True enables the template with the same id.
    - A task with `extend` is merged over a template (or an earlier task).
    - A malformed task is reported and dropped; the rest of the batch is unaffected.
    """
    templates = templates or TemplateRegistry()
    notifier = notifier or LoggingNotifier()
    result: dict[str, TaskDefinition] = {}
    extending: list[tuple[str, TaskDefinition | Mapping[str, Any], str]] = []

    for task_id, raw in raw_tasks.items():
        if raw is False:
            continue

        if raw is True:
            try:
                result[task_id] = templates.require(task_id)
            except TemplateNotFoundError as e:
                notifier.notify(str(e))
            continue

        try:
            extend = raw.get("extend") if isinstance(raw, Mapping) else getattr(raw, "extend", None)
            if extend:
                extending.append((task_id, raw, str(extend)))
                continue
            result[task_id] = _as_definition(task_id, raw)
        except TaskDefinitionError as e:
            logger.error("Invalid task %r: %s", task_id, e)
            notifier.notify(str(e), logging.ERROR)

    for task_id, raw, base_id in extending:
        base = templates.get(base_id)
        if base is None and base_id in result:
            base = copy.deepcopy(result[base_id])
        if base is None:
            message = f"Task '{task_id}' extends unknown task '{base_id}'"
            logger.error("%s", message)
            notifier.notify(message, logging.ERROR)
            continue
        try:
            result[task_id] = merge_definitions(base, raw, task_id)
        except TaskDefinitionError as e:
            logger.error("Invalid task %r: %s", task_id, e)
            notifier.notify(str(e), logging.ERROR)

    return result

