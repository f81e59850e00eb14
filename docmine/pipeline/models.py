"""Core records flowing through the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docmine.lib.timestamps import ensure_utc


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Message(_Record):
    """An ingested chat message. Immutable once stored."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    stream_id: str = Field(alias="streamId")
    timestamp: datetime
    author: str
    content: str
    channel: str | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict, alias="rawData")

    @field_validator("timestamp")
    @classmethod
    def timestamp_is_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class RagSearchCriteria(_Record):
    keywords: list[str] = Field(default_factory=list)
    semantic_query: str = Field(default="", alias="semanticQuery")

    def query_text(self) -> str:
        """Query string sent to the retrieval service."""
        parts = [self.semantic_query.strip(), " ".join(k.strip() for k in self.keywords if k.strip())]
        return " ".join(part for part in parts if part)


class ConversationThread(_Record):
    """Messages the classifier grouped together.

    ``message_ids`` are indices into the batch's filtered message list.
    """

    id: str
    category: str
    message_ids: list[int] = Field(alias="messageIds")
    summary: str = ""
    doc_value_reason: str = Field(default="", alias="docValueReason")
    rag_search_criteria: RagSearchCriteria = Field(default_factory=RagSearchCriteria, alias="ragSearchCriteria")


class UpdateType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    NONE = "NONE"


class RelatedDoc(_Record):
    page: str
    section: str
    similarity_score: float = Field(alias="similarityScore")
    match_type: str = Field(alias="matchType")  # same-section | semantic | keyword
    snippet: str = ""


class DuplicationWarning(_Record):
    detected: bool = False
    matching_page: str | None = Field(default=None, alias="matchingPage")
    matching_section: str | None = Field(default=None, alias="matchingSection")
    overlap_percentage: int = Field(default=0, alias="overlapPercentage")


class StyleMetrics(_Record):
    avg_sentence_length: float = Field(default=0.0, alias="avgSentenceLength")
    uses_code_examples: bool = Field(default=False, alias="usesCodeExamples")
    format_pattern: str = Field(default="prose", alias="formatPattern")
    technical_depth: str = Field(default="low", alias="technicalDepth")


class StyleAnalysis(_Record):
    target_page_style: StyleMetrics = Field(default_factory=StyleMetrics, alias="targetPageStyle")
    proposal_style: StyleMetrics = Field(default_factory=StyleMetrics, alias="proposalStyle")
    consistency_notes: list[str] = Field(default_factory=list, alias="consistencyNotes")


class ChangeContext(_Record):
    target_section_char_count: int = Field(default=0, alias="targetSectionCharCount")
    proposal_char_count: int = Field(default=0, alias="proposalCharCount")
    change_percentage: int = Field(default=0, alias="changePercentage")


class SourceAnalysis(_Record):
    message_count: int = Field(default=0, alias="messageCount")
    unique_authors: int = Field(default=0, alias="uniqueAuthors")
    thread_had_consensus: bool = Field(default=False, alias="threadHadConsensus")
    conversation_summary: str = Field(default="", alias="conversationSummary")


class ProposalEnrichment(_Record):
    """Reviewer context computed for a proposal after generation."""

    related_docs: list[RelatedDoc] = Field(default_factory=list, alias="relatedDocs")
    duplication_warning: DuplicationWarning = Field(default_factory=DuplicationWarning, alias="duplicationWarning")
    style_analysis: StyleAnalysis = Field(default_factory=StyleAnalysis, alias="styleAnalysis")
    change_context: ChangeContext = Field(default_factory=ChangeContext, alias="changeContext")
    source_analysis: SourceAnalysis = Field(default_factory=SourceAnalysis, alias="sourceAnalysis")


class Proposal(_Record):
    """A suggested documentation change for one page."""

    update_type: UpdateType = Field(alias="updateType")
    page: str
    section: str | None = None
    suggested_text: str | None = Field(default=None, alias="suggestedText")
    reasoning: str = ""
    source_messages: list[int] | None = Field(default=None, alias="sourceMessages")
    warnings: list[str] = Field(default_factory=list)
    enrichment: ProposalEnrichment | None = None

    def with_warning(self, warning: str) -> Proposal:
        return self.model_copy(update={"warnings": [*self.warnings, warning]})


class RunStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PipelineError:
    """A step failure recorded in the run and in the shared context."""

    step_id: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"stepId": self.step_id, "message": self.message, "context": self.context}


@dataclass
class StepRun:
    """Outcome of one step inside one orchestrator run (persisted in the run log)."""

    step_id: str
    step_type: str
    status: str
    input_count: int = 0
    output_count: int = 0
    duration_ms: int = 0
    attempts: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "stepId": self.step_id,
            "stepType": self.step_type,
            "status": self.status,
            "inputCount": self.input_count,
            "outputCount": self.output_count,
            "durationMs": self.duration_ms,
            "attempts": self.attempts,
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class PipelineMetrics:
    total_duration_ms: int = 0
    llm_calls: int = 0
    llm_tokens_used: int = 0
    cache_hits: int = 0
    step_durations: dict[str, int] = field(default_factory=dict)


@dataclass
class PipelineResult:
    success: bool
    status: RunStatus
    messages_processed: int
    threads_created: int
    proposals_generated: int
    errors: list[PipelineError]
    metrics: PipelineMetrics
    steps: list[StepRun] = field(default_factory=list)
    run_id: int | None = None


__all__ = [
    "ChangeContext",
    "ConversationThread",
    "DuplicationWarning",
    "Message",
    "PipelineError",
    "PipelineMetrics",
    "PipelineResult",
    "Proposal",
    "ProposalEnrichment",
    "RagSearchCriteria",
    "RelatedDoc",
    "RunStatus",
    "SourceAnalysis",
    "StepRun",
    "StyleAnalysis",
    "StyleMetrics",
    "UpdateType",
]
