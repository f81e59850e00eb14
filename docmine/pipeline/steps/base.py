"""Step contract and the helper object steps compose.

A step is any object satisfying ``PipelineStep``. The orchestrator never
cares about concrete classes; the registry maps a ``stepType`` string to a
constructor and everything else goes through the protocol.

Steps must be safe to retry against the same context. The built-in steps
compute their outputs (and per-item errors) locally and publish them onto
the context in one assignment at the end of ``execute``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

from docmine.errors import MissingDependencyError, StepConfigError
from docmine.lib.log import get_logger
from docmine.llm.models import JSONResult, ModelRequest
from docmine.llm.service import ModelInvocationService
from docmine.pipeline.config import StepConfig
from docmine.pipeline.context import PipelineContext, PromptLog
from docmine.pipeline.models import PipelineError
from docmine.retrieval.protocols import RetrievalService

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_MODEL = "default"

_MISSING: Any = object()


@dataclass(frozen=True)
class StepMetadata:
    name: str
    description: str
    version: str
    requires_model: bool = False
    requires_retrieval: bool = False


@dataclass
class StepServices:
    """External handles a step may need. Any of them may be absent."""

    model: ModelInvocationService | None = None
    retrieval: RetrievalService | None = None
    default_model: str = DEFAULT_MODEL
    enable_caching: bool = True


@runtime_checkable
class PipelineStep(Protocol):
    step_id: str
    step_type: str

    def execute(self, context: PipelineContext) -> PipelineContext:
        """Read earlier outputs from ``context``, write this step's outputs, return it."""
        ...

    def validate_config(self, config: StepConfig) -> bool:
        ...

    def metadata(self) -> StepMetadata:
        ...

    def count_input(self, context: PipelineContext) -> int:
        ...

    def count_output(self, context: PipelineContext) -> int:
        ...


def check_temperature(config: dict[str, Any], problems: list[str]) -> None:
    temperature = config.get("temperature")
    if temperature is not None and (not isinstance(temperature, (int, float)) or not 0 <= temperature <= 2):
        problems.append("temperature must be between 0 and 2")


def check_positive_int(config: dict[str, Any], key: str, problems: list[str], *, maximum: int | None = None) -> None:
    value = config.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 1 or (maximum is not None and value > maximum):
        bound = f"between 1 and {maximum}" if maximum is not None else "a positive integer"
        problems.append(f"{key} must be {bound}")


class StepSupport:
    """Shared helpers: config lookup, error records, model calls with accounting."""

    def __init__(self, config: StepConfig, services: StepServices) -> None:
        self.step_id = config.step_id
        self.step_type = config.step_type
        self.config = config.config
        self.services = services
        self.log = logger.bind(step_id=self.step_id, step_type=self.step_type)

    def value(self, key: str, default: Any = _MISSING) -> Any:
        """Config value for ``key``; raises when absent and no default is given."""
        if key in self.config and self.config[key] is not None:
            return self.config[key]
        if default is _MISSING:
            raise StepConfigError(
                f"Missing required config key: {key}", step_id=self.step_id, step_type=self.step_type
            )
        return default

    def error(self, context: PipelineContext, message: str, **extra: Any) -> PipelineError:
        """Build a per-item error. Callers publish it with the rest of their output."""
        self.log.warning("item failed", error=message, **extra)
        return PipelineError(
            step_id=self.step_id,
            message=message,
            context={"batchId": context.batch_id, "stepType": self.step_type, **extra},
        )

    def require_model(self) -> ModelInvocationService:
        if self.services.model is None:
            raise MissingDependencyError(f"Step {self.step_id} requires a model handle but none was provided")
        return self.services.model

    def require_retrieval(self) -> RetrievalService:
        if self.services.retrieval is None:
            raise MissingDependencyError(f"Step {self.step_id} requires a retrieval service but none was provided")
        return self.services.retrieval

    def request_json(
        self,
        context: PipelineContext,
        prompt_id: str,
        variables: dict[str, Any],
        schema: type[T],
        *,
        purpose: str,
        temperature: float,
        max_tokens: int,
        message_id: str | None = None,
    ) -> T:
        """Render ``prompt_id``, call the model and account for the call in metrics."""
        model_service = self.require_model()
        rendered = context.prompts.render(prompt_id, {**context.domain.prompt_variables(), **variables})
        prompt_log = PromptLog(prompt_id=prompt_id, system=rendered.system, user=rendered.user)
        context.prompt_logs[self.step_id] = prompt_log

        request = ModelRequest(
            model=self.value("model", self.services.default_model),
            system_prompt=rendered.system,
            user_prompt=rendered.user,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        # Every attempt counts, including retried and failed ones.
        calls_before = model_service.calls
        tokens_before = model_service.tokens_used
        try:
            result: JSONResult[T] = model_service.request_json(
                request,
                schema,
                cache_purpose=purpose if self.services.enable_caching else None,
                message_id=message_id,
            )
        finally:
            context.metrics.llm_calls += model_service.calls - calls_before
            context.metrics.llm_tokens_used += model_service.tokens_used - tokens_before
        prompt_log.response = result.response.content
        if result.cached:
            context.metrics.cache_hits += 1
        return result.data


__all__ = [
    "DEFAULT_MODEL",
    "PipelineStep",
    "StepMetadata",
    "StepServices",
    "StepSupport",
    "check_positive_int",
    "check_temperature",
]
