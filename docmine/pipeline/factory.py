"""Step registry mapping ``stepType`` identifiers to constructors.

The registry is an ordinary value: build one at startup (usually with
``create_default_registry``) and hand it to the orchestrator. Tests build
their own and register fakes.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from docmine.errors import StepConfigError
from docmine.lib.log import get_logger
from docmine.pipeline.config import StepConfig, StepType
from docmine.pipeline.steps import (
    BatchClassifyStep,
    ContentValidationStep,
    KeywordFilterStep,
    LengthReductionStep,
    ProposalGenerateStep,
    RagEnrichStep,
)
from docmine.pipeline.steps.base import PipelineStep, StepServices

logger = get_logger(__name__)

StepCreator = Callable[[StepConfig, StepServices], PipelineStep]


class StepRegistry:
    def __init__(self) -> None:
        self._creators: dict[str, StepCreator] = {}

    def register(self, step_type: str, creator: StepCreator) -> None:
        if step_type in self._creators:
            logger.warning("overwriting step type registration", step_type=step_type)
        self._creators[step_type] = creator

    def has(self, step_type: str) -> bool:
        return step_type in self._creators

    def types(self) -> list[str]:
        return list(self._creators)

    def create(self, config: StepConfig, services: StepServices) -> PipelineStep:
        """Construct and validate a step.

        Raises:
            StepConfigError: unknown step type, or a config the step rejects
        """
        creator = self._creators.get(config.step_type)
        if creator is None:
            raise StepConfigError(
                f"Unknown step type: {config.step_type}. Registered types: {', '.join(self.types()) or 'none'}",
                step_id=config.step_id,
                step_type=config.step_type,
            )
        try:
            step = creator(config, services)
        except (KeyError, TypeError, ValueError, re.error) as exc:
            raise StepConfigError(
                f"Invalid configuration for step {config.step_id}: {exc}",
                step_id=config.step_id,
                step_type=config.step_type,
            ) from exc
        if not step.validate_config(config):
            raise StepConfigError(
                f"Invalid configuration for step {config.step_id}",
                step_id=config.step_id,
                step_type=config.step_type,
            )
        return step


def create_default_registry() -> StepRegistry:
    registry = StepRegistry()
    registry.register(StepType.FILTER.value, KeywordFilterStep)
    registry.register(StepType.CLASSIFY.value, BatchClassifyStep)
    registry.register(StepType.ENRICH.value, RagEnrichStep)
    registry.register(StepType.GENERATE.value, ProposalGenerateStep)
    registry.register(StepType.VALIDATE.value, ContentValidationStep)
    registry.register(StepType.CONDENSE.value, LengthReductionStep)
    return registry


__all__ = ["StepCreator", "StepRegistry", "create_default_registry"]
