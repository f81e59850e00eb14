"""Keyword filter: the only step that never talks to a model."""

from __future__ import annotations

from docmine.pipeline.config import StepConfig, StepType
from docmine.pipeline.context import PipelineContext
from docmine.pipeline.models import Message
from docmine.pipeline.steps.base import StepMetadata, StepServices, StepSupport


def _keyword_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item)]


class KeywordFilterStep:
    step_type = StepType.FILTER.value

    def __init__(self, config: StepConfig, services: StepServices) -> None:
        self.support = StepSupport(config, services)
        self.step_id = config.step_id
        self.case_sensitive = bool(self.support.value("caseSensitive", False))
        self.include = _keyword_list(self.support.value("includeKeywords", []))
        self.exclude = _keyword_list(self.support.value("excludeKeywords", []))
        if not self.case_sensitive:
            self.include = [keyword.lower() for keyword in self.include]
            self.exclude = [keyword.lower() for keyword in self.exclude]

    def matches(self, message: Message) -> bool:
        """An empty include list keeps everything; any exclude hit drops the message."""
        text = message.content if self.case_sensitive else message.content.lower()
        if self.include and not any(keyword in text for keyword in self.include):
            return False
        return not any(keyword in text for keyword in self.exclude)

    def execute(self, context: PipelineContext) -> PipelineContext:
        kept = [message for message in context.messages if self.matches(message)]
        self.support.log.info("filtered messages", kept=len(kept), dropped=len(context.messages) - len(kept))
        context.filtered_messages = kept
        return context

    def validate_config(self, config: StepConfig) -> bool:
        for key in ("includeKeywords", "excludeKeywords"):
            value = config.config.get(key)
            if value is not None and not isinstance(value, list):
                self.support.log.error("invalid config", problem=f"{key} must be a list")
                return False
        return True

    def metadata(self) -> StepMetadata:
        return StepMetadata(
            name="Keyword Filter",
            description="Keeps messages matching include keywords and drops exclude matches",
            version="1.0.0",
        )

    def count_input(self, context: PipelineContext) -> int:
        return len(context.messages)

    def count_output(self, context: PipelineContext) -> int:
        return len(context.filtered_messages)
