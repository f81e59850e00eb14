"""Execution context shared by the steps of one orchestrator run.

A ``PipelineContext`` is owned by exactly one run. Each step reads the
outputs of earlier steps and writes only its own fields:

    Filter    -> filtered_messages
    Classify  -> threads
    Enrich    -> rag_results
    Generate  -> proposals
    Validate / Condense -> proposals (rewritten in place, per thread)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from docmine.pipeline.models import ConversationThread, Message, PipelineError, PipelineMetrics, Proposal
from docmine.pipeline.prompts import PromptRegistry
from docmine.retrieval.protocols import RagDocument

DEFAULT_CATEGORY_PRIORITY = 50
DEFAULT_MAX_PROPOSALS_PER_BATCH = 100


class Category(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    label: str = ""
    description: str = ""
    priority: int = Field(default=DEFAULT_CATEGORY_PRIORITY, ge=0, le=100)


class SecurityConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    block_patterns: list[str] = Field(default_factory=list, alias="blockPatterns")
    max_proposals_per_batch: int = Field(default=DEFAULT_MAX_PROPOSALS_PER_BATCH, ge=0, alias="maxProposalsPerBatch")


class ProjectContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_name: str = Field(default="the project", alias="projectName")
    domain: str = "software"
    target_audience: str = Field(default="developers", alias="targetAudience")
    documentation_purpose: str = Field(default="user documentation", alias="documentationPurpose")


class DomainConfig(BaseModel):
    """Per-instance knowledge: categories, security limits and project framing."""

    model_config = ConfigDict(populate_by_name=True)

    categories: list[Category] = Field(default_factory=list)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    context: ProjectContext = Field(default_factory=ProjectContext)

    def category_priority(self, category_id: str) -> int:
        for category in self.categories:
            if category.id == category_id:
                return category.priority
        return DEFAULT_CATEGORY_PRIORITY

    def prompt_variables(self) -> dict[str, str]:
        return {
            "projectName": self.context.project_name,
            "domain": self.context.domain,
            "targetAudience": self.context.target_audience,
            "documentationPurpose": self.context.documentation_purpose,
        }


@dataclass
class PromptLog:
    """Last prompt a step rendered and the raw response it received."""

    prompt_id: str
    system: str
    user: str
    response: str = ""


@dataclass
class PipelineContext:
    instance_id: str
    batch_id: str
    stream_id: str
    messages: list[Message]
    context_messages: list[Message] = field(default_factory=list)
    domain: DomainConfig = field(default_factory=DomainConfig)
    prompts: PromptRegistry = field(default_factory=PromptRegistry)

    filtered_messages: list[Message] = field(default_factory=list)
    threads: list[ConversationThread] = field(default_factory=list)
    rag_results: dict[str, list[RagDocument]] = field(default_factory=dict)
    proposals: dict[str, list[Proposal]] = field(default_factory=dict)

    errors: list[PipelineError] = field(default_factory=list)
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    prompt_logs: dict[str, PromptLog] = field(default_factory=dict)

    def threads_with_rag(self) -> list[ConversationThread]:
        """Threads that have at least one retrieved document, in classification order."""
        return [thread for thread in self.threads if self.rag_results.get(thread.id)]

    def proposal_count(self) -> int:
        return sum(len(items) for items in self.proposals.values())

    def thread_messages(self, thread: ConversationThread) -> list[Message]:
        return [self.filtered_messages[i] for i in thread.message_ids if 0 <= i < len(self.filtered_messages)]

    def thread_by_id(self, thread_id: str) -> ConversationThread | None:
        for thread in self.threads:
            if thread.id == thread_id:
                return thread
        return None


__all__ = [
    "Category",
    "DomainConfig",
    "PipelineContext",
    "ProjectContext",
    "PromptLog",
    "SecurityConfig",
]
