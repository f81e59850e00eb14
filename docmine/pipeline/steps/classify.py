"""Batch classification: group valuable messages into conversation threads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from docmine.pipeline.config import StepConfig, StepType
from docmine.pipeline.context import PipelineContext
from docmine.pipeline.models import ConversationThread, Message, RagSearchCriteria
from docmine.pipeline.steps.base import (
    StepMetadata,
    StepServices,
    StepSupport,
    check_positive_int,
    check_temperature,
)

NO_DOC_VALUE = "no-doc-value"


class ClassifiedThread(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: str = Field(max_length=50)
    messages: list[int] = Field(min_length=1)
    summary: str = Field(default="", max_length=200)
    doc_value_reason: str = Field(default="", max_length=300, alias="docValueReason")
    rag_search_criteria: RagSearchCriteria = Field(default_factory=RagSearchCriteria, alias="ragSearchCriteria")


class ClassificationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    threads: list[ClassifiedThread] = Field(default_factory=list)
    batch_summary: str | None = Field(default=None, alias="batchSummary")


def reply_target(message: Message) -> str | None:
    """Id of the message this one replies to, from the ingested payload.

    Chat platforms number messages per chat, so a ``chatId`` in the payload
    is prefixed the same way ingestion builds message ids (``<chat>-<msg>``).
    """
    reply_to = message.raw_data.get("replyToMessageId")
    if reply_to is None:
        return None
    chat_id = message.raw_data.get("chatId")
    return f"{chat_id}-{reply_to}" if chat_id is not None else str(reply_to)


def reply_depths(messages: list[Message]) -> dict[str, int]:
    """Nesting depth of each message counting only replies to messages in ``messages``."""
    ids = {m.id for m in messages}
    parents: dict[str, str] = {}
    for message in messages:
        target = reply_target(message)
        if target in ids and target != message.id:
            parents[message.id] = target

    depths: dict[str, int] = {}
    for message in messages:
        depth, current, seen = 0, message.id, {message.id}
        while current in parents and parents[current] not in seen:
            current = parents[current]
            seen.add(current)
            depth += 1
        depths[message.id] = depth
    return depths


def format_message(message: Message, label: str, depth: int = 0) -> str:
    indent = "  " * depth + ("↳ " if depth else "")
    channel = f" in {message.channel}" if message.channel else ""
    topic = message.raw_data.get("topic")
    topic_text = f" [Topic: {topic}]" if topic else ""
    return (
        f"[{label}] {indent}[{message.timestamp.isoformat()}] "
        f"{message.author}{channel}{topic_text}: {message.content}"
    )


class BatchClassifyStep:
    step_type = StepType.CLASSIFY.value

    def __init__(self, config: StepConfig, services: StepServices) -> None:
        self.support = StepSupport(config, services)
        self.step_id = config.step_id
        self.prompt_id = self.support.value("promptId", "thread-classification")
        self.temperature = float(self.support.value("temperature", 0.2))
        self.max_tokens = int(self.support.value("maxTokens", 32768))

    def execute(self, context: PipelineContext) -> PipelineContext:
        messages = context.filtered_messages
        if not messages:
            self.support.log.info("no messages to classify")
            context.threads = []
            return context

        categories = "\n".join(
            f"- {c.id}: {c.label}" + (f" ({c.description})" if c.description else "")
            for c in context.domain.categories
        ) or "(any short category name)"
        depths = reply_depths(messages)
        response = self.support.request_json(
            context,
            self.prompt_id,
            {
                "categories": categories,
                "messages": "\n".join(format_message(m, str(i), depths[m.id]) for i, m in enumerate(messages)),
                "contextMessages": "\n".join(format_message(m, "CONTEXT") for m in context.context_messages)
                or "(none)",
                "messageCount": len(messages),
            },
            ClassificationResponse,
            purpose="classification",
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        threads = self._build_threads(context.batch_id, response, len(messages))
        self.support.log.info(
            "classified batch",
            threads=len(threads),
            valuable_messages=sum(len(t.message_ids) for t in threads),
            batch_messages=len(messages),
        )
        context.threads = threads
        return context

    def _build_threads(self, batch_id: str, response: ClassificationResponse, message_count: int) -> list[ConversationThread]:
        threads: list[ConversationThread] = []
        for candidate in response.threads:
            if candidate.category == NO_DOC_VALUE:
                continue
            indices = list(dict.fromkeys(i for i in candidate.messages if 0 <= i < message_count))
            if len(indices) != len(candidate.messages):
                self.support.log.warning(
                    "dropped invalid message indices",
                    category=candidate.category,
                    requested=candidate.messages,
                    kept=indices,
                )
            if not indices:
                continue
            threads.append(
                ConversationThread(
                    id=f"{batch_id}-thread-{len(threads) + 1}",
                    category=candidate.category,
                    message_ids=indices,
                    summary=candidate.summary,
                    doc_value_reason=candidate.doc_value_reason,
                    rag_search_criteria=candidate.rag_search_criteria,
                )
            )
        return threads

    def validate_config(self, config: StepConfig) -> bool:
        problems: list[str] = []
        check_temperature(config.config, problems)
        check_positive_int(config.config, "maxTokens", problems)
        for problem in problems:
            self.support.log.error("invalid config", problem=problem)
        return not problems

    def metadata(self) -> StepMetadata:
        return StepMetadata(
            name="Batch Classifier",
            description="Groups valuable messages into threads with retrieval criteria",
            version="1.0.0",
            requires_model=True,
        )

    def count_input(self, context: PipelineContext) -> int:
        return len(context.filtered_messages)

    def count_output(self, context: PipelineContext) -> int:
        return len(context.threads)
