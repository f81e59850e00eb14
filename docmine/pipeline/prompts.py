"""Prompt templates rendered with Jinja2.

Each prompt id maps to a system and a user template. Built-in defaults
cover every step that talks to a model; an instance may override any of
them with YAML files under ``<config_root>/<instance>/prompts/``::

    id: changeset-generation
    system: |
      You maintain the {{ projectName }} documentation...
    user: |
      {{ messages }}
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError

from docmine.errors import ConfigError
from docmine.lib.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PromptTemplate:
    id: str
    system: str
    user: str


@dataclass(frozen=True)
class RenderedPrompt:
    system: str
    user: str


DEFAULT_PROMPTS: dict[str, PromptTemplate] = {
    "thread-classification": PromptTemplate(
        id="thread-classification",
        system=(
            "You review community chat for {{ projectName }} ({{ domain }}).\n"
            "Group the messages that carry documentation value into conversation threads.\n"
            "Use only the categories listed below. Messages with no documentation value are left out.\n\n"
            "Categories:\n{{ categories }}\n\n"
            'Respond with JSON: {"threads": [{"category", "messages", "summary", "docValueReason",'
            ' "ragSearchCriteria": {"keywords", "semanticQuery"}}], "batchSummary"}.\n'
            '"messages" lists the [n] indices of the batch messages in the thread.\n'
            "A reply is indented under the message it answers and marked with ↳."
        ),
        user=(
            "Earlier conversation for background only, do not classify:\n{{ contextMessages }}\n\n"
            "Messages to classify:\n{{ messages }}"
        ),
    ),
    "changeset-generation": PromptTemplate(
        id="changeset-generation",
        system=(
            "You maintain the {{ projectName }} documentation ({{ documentationPurpose }}) "
            "for {{ targetAudience }}.\n"
            "Propose concrete documentation changes grounded only in the retrieved pages.\n"
            'Respond with JSON: {"proposals": [{"updateType": "INSERT|UPDATE|DELETE|NONE", "page", "section",'
            ' "suggestedText", "reasoning", "sourceMessages"}], "proposalsRejected", "rejectionReason"}.'
        ),
        user=(
            "Thread category: {{ threadCategory }}\n"
            "Summary: {{ threadSummary }}\n"
            "Why it matters: {{ docValueReason }}\n\n"
            "Messages:\n{{ messages }}\n\n"
            "Relevant documentation:\n{{ ragContext }}"
        ),
    ),
    "content-reformat": PromptTemplate(
        id="content-reformat",
        system=(
            "You fix formatting problems in {{ fileFormat }} content without changing its meaning.\n"
            'Respond with JSON: {"reformattedContent": "..."}.'
        ),
        user="File: {{ page }}\nProblem: {{ problem }}\n\nContent:\n{{ content }}",
    ),
    "content-condense": PromptTemplate(
        id="content-condense",
        system=(
            "You shorten documentation text while keeping every fact a reader needs.\n"
            "Aim for about {{ targetLength }} characters.\n"
            'Respond with JSON: {"condensedContent": "..."}.'
        ),
        user="File: {{ page }}\nCurrent length: {{ currentLength }}\n\nContent:\n{{ content }}",
    ),
}


class PromptRegistry:
    """Lookup and rendering of prompt templates by id."""

    def __init__(self, templates: dict[str, PromptTemplate] | None = None) -> None:
        self._templates: dict[str, PromptTemplate] = dict(DEFAULT_PROMPTS)
        if templates:
            self._templates.update(templates)
        self._env = Environment(loader=BaseLoader(), autoescape=False, undefined=StrictUndefined)

    @classmethod
    def load(cls, directory: Path | None) -> PromptRegistry:
        """Defaults overlaid with every ``*.yaml`` prompt file in ``directory``."""
        overrides: dict[str, PromptTemplate] = {}
        if directory is not None and directory.is_dir():
            for path in sorted(directory.glob("*.yaml")):
                template = _read_prompt_file(path)
                overrides[template.id] = template
                logger.debug("loaded prompt override", prompt_id=template.id, path=str(path))
        return cls(overrides)

    def ids(self) -> list[str]:
        return sorted(self._templates)

    def get(self, prompt_id: str) -> PromptTemplate | None:
        return self._templates.get(prompt_id)

    def register(self, template: PromptTemplate) -> None:
        self._templates[template.id] = template

    def render(self, prompt_id: str, variables: dict[str, Any]) -> RenderedPrompt:
        template = self._templates.get(prompt_id)
        if template is None:
            raise ConfigError(f"Unknown prompt id: {prompt_id}")
        try:
            return RenderedPrompt(
                system=self._env.from_string(template.system).render(**variables),
                user=self._env.from_string(template.user).render(**variables),
            )
        except TemplateError as exc:
            raise ConfigError(f"Failed to render prompt {prompt_id}: {exc}") from exc


def _read_prompt_file(path: Path) -> PromptTemplate:
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read prompt file {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Prompt file {path} must contain a mapping")
    missing = [key for key in ("system", "user") if not isinstance(payload.get(key), str)]
    if missing:
        raise ConfigError(f"Prompt file {path} is missing: {', '.join(missing)}")
    return PromptTemplate(id=str(payload.get("id") or path.stem), system=payload["system"], user=payload["user"])


__all__ = ["DEFAULT_PROMPTS", "PromptRegistry", "PromptTemplate", "RenderedPrompt"]
