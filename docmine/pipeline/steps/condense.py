"""Priority-tiered length reduction of suggested text.

Each thread category carries a priority (see ``DomainConfig.categories``).
The tier applied to a proposal is the one with the highest ``minPriority``
the category's priority meets. Text within the tier's ``maxLength`` is left
alone; longer text gets exactly one condensation call, and whatever comes
back is accepted even when it is not shorter. The warning records both
lengths so a reviewer can spot those cases.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docmine.pipeline.config import StepConfig, StepType
from docmine.pipeline.context import PipelineContext
from docmine.pipeline.models import PipelineError, Proposal, UpdateType
from docmine.pipeline.steps.base import StepMetadata, StepServices, StepSupport, check_temperature

MIN_MAX_LENGTH = 100


class CondenseResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    condensed_content: str = Field(alias="condensedContent")


@dataclass(frozen=True)
class LengthTier:
    min_priority: int
    max_length: int
    target_length: int

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> LengthTier:
        return cls(
            min_priority=int(raw["minPriority"]),
            max_length=int(raw["maxLength"]),
            target_length=int(raw["targetLength"]),
        )


def select_tier(priority: int, tiers: list[LengthTier], default: LengthTier) -> LengthTier:
    for tier in sorted(tiers, key=lambda t: t.min_priority, reverse=True):
        if priority >= tier.min_priority:
            return tier
    return default


class LengthReductionStep:
    step_type = StepType.CONDENSE.value

    def __init__(self, config: StepConfig, services: StepServices) -> None:
        self.support = StepSupport(config, services)
        self.step_id = config.step_id
        self.default_tier = LengthTier(
            min_priority=0,
            max_length=int(self.support.value("defaultMaxLength", 3000)),
            target_length=int(self.support.value("defaultTargetLength", 2000)),
        )
        self.tiers = [LengthTier.from_config(raw) for raw in self.support.value("priorityTiers", [])]
        self.prompt_id = self.support.value("promptId", "content-condense")
        self.temperature = float(self.support.value("temperature", 0.3))
        self.max_tokens = int(self.support.value("maxTokens", 8192))

    def tier_for_thread(self, context: PipelineContext, thread_id: str) -> LengthTier:
        thread = context.thread_by_id(thread_id)
        if thread is None:
            return self.default_tier
        return select_tier(context.domain.category_priority(thread.category), self.tiers, self.default_tier)

    def execute(self, context: PipelineContext) -> PipelineContext:
        updated: dict[str, list[Proposal]] = {}
        errors: list[PipelineError] = []
        condensed = 0
        for thread_id, proposals in context.proposals.items():
            tier = self.tier_for_thread(context, thread_id)
            updated[thread_id] = []
            for proposal in proposals:
                text = proposal.suggested_text
                if proposal.update_type is UpdateType.DELETE or not text or len(text) <= tier.max_length:
                    updated[thread_id].append(proposal)
                    continue
                try:
                    updated[thread_id].append(self.condense(context, proposal, tier))
                    condensed += 1
                except Exception as exc:
                    errors.append(
                        self.support.error(
                            context,
                            f"Condensation failed for {proposal.page} in thread {thread_id}: {exc}",
                            threadId=thread_id,
                            page=proposal.page,
                        )
                    )
                    updated[thread_id].append(proposal)
        self.support.log.info("length reduction complete", condensed=condensed)
        context.proposals = updated
        context.errors.extend(errors)
        return context

    def condense(self, context: PipelineContext, proposal: Proposal, tier: LengthTier) -> Proposal:
        assert proposal.suggested_text is not None
        original_length = len(proposal.suggested_text)
        response = self.support.request_json(
            context,
            self.prompt_id,
            {
                "page": proposal.page,
                "content": proposal.suggested_text,
                "currentLength": original_length,
                "maxLength": tier.max_length,
                "targetLength": tier.target_length,
            },
            CondenseResponse,
            purpose="condensation",
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        text = response.condensed_content
        if len(text) > tier.max_length:
            self.support.log.warning(
                "condensed text still over budget",
                page=proposal.page,
                original=original_length,
                condensed=len(text),
                max_length=tier.max_length,
            )
        return proposal.model_copy(update={"suggested_text": text}).with_warning(
            f"Condensed from {original_length} to {len(text)} characters"
        )

    def validate_config(self, config: StepConfig) -> bool:
        problems: list[str] = []
        raw = config.config
        default_max = raw.get("defaultMaxLength")
        if default_max is not None and (not isinstance(default_max, int) or default_max < MIN_MAX_LENGTH):
            problems.append(f"defaultMaxLength must be at least {MIN_MAX_LENGTH}")
        default_target = raw.get("defaultTargetLength")
        if isinstance(default_max, int) and isinstance(default_target, int) and default_target >= default_max:
            problems.append("defaultTargetLength must be less than defaultMaxLength")
        tiers = raw.get("priorityTiers") or []
        if not isinstance(tiers, list):
            problems.append("priorityTiers must be a list")
            tiers = []
        for index, tier in enumerate(tiers):
            try:
                parsed = LengthTier.from_config(tier)
            except (KeyError, TypeError, ValueError):
                problems.append(f"priorityTiers[{index}] needs integer minPriority, maxLength and targetLength")
                continue
            if parsed.target_length >= parsed.max_length:
                problems.append(f"priorityTiers[{index}].targetLength must be less than maxLength")
        check_temperature(raw, problems)
        for problem in problems:
            self.support.log.error("invalid config", problem=problem)
        return not problems

    def metadata(self) -> StepMetadata:
        return StepMetadata(
            name="Length Reducer",
            description="Condenses suggestions that exceed their category's length budget",
            version="1.1.0",
            requires_model=True,
        )

    def count_input(self, context: PipelineContext) -> int:
        return context.proposal_count()

    def count_output(self, context: PipelineContext) -> int:
        return context.proposal_count()
