"""Built-in pipeline steps."""

from docmine.pipeline.steps.base import PipelineStep, StepMetadata, StepServices, StepSupport
from docmine.pipeline.steps.classify import BatchClassifyStep
from docmine.pipeline.steps.condense import LengthReductionStep
from docmine.pipeline.steps.enrich import RagEnrichStep
from docmine.pipeline.steps.filter import KeywordFilterStep
from docmine.pipeline.steps.generate import ProposalGenerateStep
from docmine.pipeline.steps.validate import ContentValidationStep

__all__ = [
    "BatchClassifyStep",
    "ContentValidationStep",
    "KeywordFilterStep",
    "LengthReductionStep",
    "PipelineStep",
    "ProposalGenerateStep",
    "RagEnrichStep",
    "StepMetadata",
    "StepServices",
    "StepSupport",
]
