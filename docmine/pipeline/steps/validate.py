"""Format-aware validation of suggested text, with model-assisted repair."""

from __future__ import annotations

import re
from collections import Counter
from pathlib import PurePosixPath

import yaml
from pydantic import BaseModel, ConfigDict, Field

from docmine.lib.json import JSONDecodeError, loads
from docmine.pipeline.config import StepConfig, StepType
from docmine.pipeline.context import PipelineContext
from docmine.pipeline.models import PipelineError, Proposal, UpdateType
from docmine.pipeline.steps.base import (
    StepMetadata,
    StepServices,
    StepSupport,
    check_positive_int,
    check_temperature,
)

MAX_REFORMAT_RETRIES = 5

_FORMATS = {
    ".md": "markdown",
    ".mdx": "markdown",
    ".markdown": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
}

_FENCE_LINE_RE = re.compile(r"^\s*(```|~~~)")
_BACKTICK_RUN_RE = re.compile(r"`+")


class ReformatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reformatted_content: str = Field(alias="reformattedContent")


def detect_format(page: str) -> str | None:
    return _FORMATS.get(PurePosixPath(page).suffix.lower())


def check_markdown(text: str) -> str | None:
    """Unbalanced code fences, or unbalanced inline code outside fences."""
    fences = 0
    prose: list[str] = []
    for line in text.split("\n"):
        if _FENCE_LINE_RE.match(line):
            fences += 1
        elif fences % 2 == 0:
            prose.append(line)
    if fences % 2:
        return "unclosed code fence"
    runs = Counter(len(run) for run in _BACKTICK_RUN_RE.findall("\n".join(prose)))
    if any(count % 2 for count in runs.values()):
        return "unbalanced inline code backticks"
    return None


def check_json(text: str) -> str | None:
    try:
        loads(text)
    except JSONDecodeError as exc:
        return f"invalid JSON: {exc}"
    return None


def check_yaml(text: str) -> str | None:
    try:
        yaml.safe_load(text)
    except yaml.YAMLError as exc:
        return f"invalid YAML: {str(exc).splitlines()[0]}"
    return None


_CHECKERS = {"markdown": check_markdown, "json": check_json, "yaml": check_yaml}


def find_format_problem(text: str, file_format: str) -> str | None:
    return _CHECKERS[file_format](text)


class ContentValidationStep:
    step_type = StepType.VALIDATE.value

    def __init__(self, config: StepConfig, services: StepServices) -> None:
        self.support = StepSupport(config, services)
        self.step_id = config.step_id
        self.max_retries = int(self.support.value("maxRetries", 2))
        self.prompt_id = self.support.value("promptId", "content-reformat")
        self.temperature = float(self.support.value("temperature", 0.2))
        self.max_tokens = int(self.support.value("maxTokens", 8192))
        self.skip_patterns = [re.compile(p) for p in self.support.value("skipPatterns", [])]

    def should_skip(self, proposal: Proposal) -> bool:
        if proposal.update_type is UpdateType.DELETE or not proposal.suggested_text:
            return True
        if detect_format(proposal.page) is None:
            return True
        # Patterns match either the page path or the content (minified bundles, generated files).
        return any(
            pattern.search(proposal.page) or pattern.search(proposal.suggested_text)
            for pattern in self.skip_patterns
        )

    def execute(self, context: PipelineContext) -> PipelineContext:
        updated: dict[str, list[Proposal]] = {}
        errors: list[PipelineError] = []
        for thread_id, proposals in context.proposals.items():
            updated[thread_id] = []
            for proposal in proposals:
                if self.should_skip(proposal):
                    updated[thread_id].append(proposal)
                    continue
                try:
                    updated[thread_id].append(self.validate(context, proposal))
                except Exception as exc:
                    errors.append(
                        self.support.error(
                            context,
                            f"Validation failed for {proposal.page} in thread {thread_id}: {exc}",
                            threadId=thread_id,
                            page=proposal.page,
                        )
                    )
                    updated[thread_id].append(proposal)
        context.proposals = updated
        context.errors.extend(errors)
        return context

    def validate(self, context: PipelineContext, proposal: Proposal) -> Proposal:
        file_format = detect_format(proposal.page)
        assert file_format is not None and proposal.suggested_text is not None
        text = proposal.suggested_text
        problem = find_format_problem(text, file_format)
        if problem is None:
            return proposal

        original_problem = problem
        attempts = 0
        while problem is not None and attempts < self.max_retries:
            attempts += 1
            response = self.support.request_json(
                context,
                self.prompt_id,
                {"fileFormat": file_format, "page": proposal.page, "problem": problem, "content": text},
                ReformatResponse,
                purpose="validation",
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            text = response.reformatted_content
            problem = find_format_problem(text, file_format)

        if problem is None:
            self.support.log.info("reformatted content", page=proposal.page, attempts=attempts)
            return proposal.model_copy(update={"suggested_text": text}).with_warning(
                f"Reformatted {file_format} content to fix: {original_problem}"
            )
        self.support.log.warning("content still malformed", page=proposal.page, attempts=attempts, problem=problem)
        return proposal.model_copy(update={"suggested_text": text}).with_warning(
            f"Content has {file_format} problems after {attempts} reformat attempts: {problem}"
        )

    def validate_config(self, config: StepConfig) -> bool:
        problems: list[str] = []
        max_retries = config.config.get("maxRetries")
        if max_retries is not None and (
            isinstance(max_retries, bool)
            or not isinstance(max_retries, int)
            or not 0 <= max_retries <= MAX_REFORMAT_RETRIES
        ):
            problems.append(f"maxRetries must be between 0 and {MAX_REFORMAT_RETRIES}")
        check_temperature(config.config, problems)
        check_positive_int(config.config, "maxTokens", problems)
        for pattern in config.config.get("skipPatterns") or []:
            try:
                re.compile(pattern)
            except (re.error, TypeError):
                problems.append(f"invalid skip pattern: {pattern!r}")
        for problem in problems:
            self.support.log.error("invalid config", problem=problem)
        return not problems

    def metadata(self) -> StepMetadata:
        return StepMetadata(
            name="Content Validator",
            description="Checks Markdown, JSON and YAML suggestions and asks the model to repair broken ones",
            version="1.0.0",
            requires_model=True,
        )

    def count_input(self, context: PipelineContext) -> int:
        return context.proposal_count()

    def count_output(self, context: PipelineContext) -> int:
        return context.proposal_count()
