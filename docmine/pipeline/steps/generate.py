"""Proposal generation: turn grounded threads into documentation changes.

Only threads with at least one retrieved document are considered. Limits:

- ``maxProposalsPerThread`` truncates each thread's list.
- ``security.maxProposalsPerBatch`` caps the batch; once the running total
  reaches it the remaining threads are skipped entirely.

Text matching a security block pattern is flagged with a warning and kept
for a human reviewer to judge. Kept proposals then get reviewer context
(related pages, duplication, style, change size) unless
``enrichProposals`` is false.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field

from docmine.pipeline.config import StepConfig, StepType
from docmine.pipeline.context import PipelineContext
from docmine.pipeline.enrichment import enrich_proposal
from docmine.pipeline.formatting import apply_fixers
from docmine.pipeline.models import ConversationThread, Message, PipelineError, Proposal, UpdateType
from docmine.pipeline.steps.base import (
    StepMetadata,
    StepServices,
    StepSupport,
    check_positive_int,
    check_temperature,
)
from docmine.retrieval.protocols import RagDocument


class GeneratedProposal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    update_type: UpdateType = Field(alias="updateType")
    page: str
    section: str | None = None
    suggested_text: str | None = Field(default=None, alias="suggestedText")
    reasoning: str
    source_messages: list[int] | None = Field(default=None, alias="sourceMessages")


class ProposalResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proposals: list[GeneratedProposal] = Field(default_factory=list)
    proposals_rejected: bool = Field(default=False, alias="proposalsRejected")
    rejection_reason: str | None = Field(default=None, alias="rejectionReason")


def format_rag_documents(documents: list[RagDocument]) -> str:
    if not documents:
        return "(No relevant documentation found)"
    return "\n\n---\n\n".join(
        f"[DOC {i}] {doc.title}\nPath: {doc.file_path}\nSimilarity: {doc.similarity:.3f}\n\n{doc.content}"
        for i, doc in enumerate(documents, start=1)
    )


def format_thread_messages(messages: list[Message]) -> str:
    if not messages:
        return "(No messages)"
    return "\n\n".join(f"[{m.id}] [{m.timestamp.isoformat()}] {m.author}: {m.content}" for m in messages)


def flag_blocked_patterns(proposal: Proposal, patterns: list[re.Pattern[str]]) -> Proposal:
    if not proposal.suggested_text:
        return proposal
    for pattern in patterns:
        if pattern.search(proposal.suggested_text):
            proposal = proposal.with_warning(f"Blocked pattern detected: {pattern.pattern}")
    return proposal


class ProposalGenerateStep:
    step_type = StepType.GENERATE.value

    def __init__(self, config: StepConfig, services: StepServices) -> None:
        self.support = StepSupport(config, services)
        self.step_id = config.step_id
        self.prompt_id = self.support.value("promptId", "changeset-generation")
        self.temperature = float(self.support.value("temperature", 0.4))
        self.max_tokens = int(self.support.value("maxTokens", 32768))
        self.max_per_thread = int(self.support.value("maxProposalsPerThread", 5))
        self.post_process = bool(self.support.value("postProcess", True))
        self.enrich = bool(self.support.value("enrichProposals", True))

    def execute(self, context: PipelineContext) -> PipelineContext:
        self.support.require_model()
        threads = context.threads_with_rag()
        if not threads:
            self.support.log.info("no grounded threads, skipping generation")
            context.proposals = {}
            return context

        batch_cap = context.domain.security.max_proposals_per_batch
        patterns = [re.compile(p, re.IGNORECASE) for p in context.domain.security.block_patterns]
        proposals: dict[str, list[Proposal]] = {}
        errors: list[PipelineError] = []
        total = 0

        for thread in threads:
            if total >= batch_cap:
                self.support.log.warning("reached max proposals per batch, stopping", cap=batch_cap)
                break
            try:
                generated = self.generate_for_thread(context, thread)
            except Exception as exc:
                errors.append(
                    self.support.error(
                        context,
                        f"Proposal generation failed for thread {thread.id}: {exc}",
                        threadId=thread.id,
                    )
                )
                proposals[thread.id] = []
                continue
            generated = [flag_blocked_patterns(p, patterns) for p in generated]
            limited = generated[: min(self.max_per_thread, batch_cap - total)]
            if self.enrich:
                documents = context.rag_results.get(thread.id, [])
                messages = context.thread_messages(thread)
                limited = [enrich_proposal(p, documents, messages) for p in limited]
            proposals[thread.id] = limited
            total += len(limited)
            self.support.log.debug("generated proposals", thread_id=thread.id, count=len(limited))

        self.support.log.info("proposal generation complete", proposals=total, threads=len(proposals))
        context.proposals = proposals
        context.errors.extend(errors)
        return context

    def generate_for_thread(self, context: PipelineContext, thread: ConversationThread) -> list[Proposal]:
        documents = context.rag_results.get(thread.id, [])
        response = self.support.request_json(
            context,
            self.prompt_id,
            {
                "threadSummary": thread.summary,
                "threadCategory": thread.category,
                "docValueReason": thread.doc_value_reason,
                "ragContext": format_rag_documents(documents),
                "messages": format_thread_messages(context.thread_messages(thread)),
            },
            ProposalResponse,
            purpose="generation",
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            message_id=thread.id,
        )
        if response.proposals_rejected:
            self.support.log.debug("proposals rejected", thread_id=thread.id, reason=response.rejection_reason)
            return []
        return [
            self._to_proposal(item)
            for item in response.proposals
            if item.update_type is not UpdateType.NONE
        ]

    def _to_proposal(self, item: GeneratedProposal) -> Proposal:
        proposal = Proposal(
            update_type=item.update_type,
            page=item.page,
            section=item.section,
            suggested_text=item.suggested_text,
            reasoning=item.reasoning,
            source_messages=item.source_messages,
        )
        if self.post_process and proposal.suggested_text:
            formatted = apply_fixers(proposal.suggested_text, proposal.page)
            if formatted.modified:
                proposal = proposal.model_copy(update={"suggested_text": formatted.text})
                self.support.log.debug("applied formatting fixes", page=proposal.page, fixers=formatted.applied)
        return proposal

    def validate_config(self, config: StepConfig) -> bool:
        problems: list[str] = []
        check_temperature(config.config, problems)
        check_positive_int(config.config, "maxProposalsPerThread", problems)
        check_positive_int(config.config, "maxTokens", problems)
        model = config.config.get("model")
        if model is not None and not isinstance(model, str):
            problems.append("model must be a string")
        for problem in problems:
            self.support.log.error("invalid config", problem=problem)
        return not problems

    def metadata(self) -> StepMetadata:
        return StepMetadata(
            name="Proposal Generator",
            description="Generates documentation change proposals using the model",
            version="1.0.0",
            requires_model=True,
        )

    def count_input(self, context: PipelineContext) -> int:
        return len(context.threads)

    def count_output(self, context: PipelineContext) -> int:
        return context.proposal_count()
