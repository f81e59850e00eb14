"""Schema-validated JSON requests against a generative model.

``ModelInvocationService.request_json`` is the single doorway every step
uses to talk to a model. It layers three things over a raw ``ModelClient``:

1. Response cache lookup keyed by the full prompt text (system + user).
2. Retry with exponential backoff, restricted to transient failures.
3. Parsing and pydantic validation of the JSON payload.
"""

from __future__ import annotations

import re
import time
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ValidationError
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from docmine.cache.store import ResponseCache
from docmine.errors import ModelInvocationError, SchemaValidationError, TransientModelError
from docmine.lib.env import get_env
from docmine.lib.json import JSONDecodeError, loads
from docmine.lib.log import get_logger
from docmine.llm.models import JSONResult, ModelRequest, ModelResponse, schema_hint
from docmine.llm.protocols import ModelClient

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_ATTEMPTS = 3
DEFAULT_RETRY_BASE = 2.0

_FENCED_JSON_RE = re.compile(r"^\s*```(?:json)?\s*\n(?P<body>.*)\n\s*```\s*$", re.DOTALL)


def _resolve_attempts(value: int | None) -> int:
    """Resolve attempt count from explicit value, environment, or default."""
    if value is not None:
        return max(1, int(value))
    env_value = get_env("MODEL_ATTEMPTS")
    if env_value:
        try:
            return max(1, int(env_value))
        except ValueError:
            logger.warning("ignoring invalid DOCMINE_MODEL_ATTEMPTS", value=env_value)
    return DEFAULT_ATTEMPTS


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ModelInvocationError) and exc.transient


def _strip_code_fence(text: str) -> str:
    match = _FENCED_JSON_RE.match(text)
    return match.group("body") if match else text


def parse_json_payload(content: str, schema: type[T]) -> T:
    """Parse model output and validate it against ``schema``.

    Malformed JSON is transient (the next sample may well be fine); JSON that
    parses but violates the schema is permanent.
    """
    try:
        payload: Any = loads(_strip_code_fence(content))
    except JSONDecodeError as exc:
        raise TransientModelError(f"Malformed JSON from model: {exc}") from exc
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        errors = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
        raise SchemaValidationError(
            f"Model response does not match {schema.__name__}: {'; '.join(errors)}",
            errors=errors,
        ) from exc


class ModelInvocationService:
    """Cache-aware, retrying JSON client for one model provider."""

    def __init__(
        self,
        client: ModelClient,
        *,
        cache: ResponseCache | None = None,
        attempts: int | None = None,
        retry_base: float = DEFAULT_RETRY_BASE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.cache = cache
        self.attempts = _resolve_attempts(attempts)
        self.retry_base = retry_base
        self._sleep = sleep
        self.calls = 0
        self.cache_hits = 0
        self.tokens_used = 0

    def request_json(
        self,
        request: ModelRequest,
        schema: type[T],
        *,
        cache_purpose: str | None = None,
        message_id: str | None = None,
    ) -> JSONResult[T]:
        prompt = request.prompt_text

        if cache_purpose and self.cache is not None:
            cached = self._from_cache(prompt, schema, cache_purpose, request.model)
            if cached is not None:
                return cached

        retryer = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.retry_base),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        data, response = retryer(self._attempt, request, schema)

        if cache_purpose and self.cache is not None:
            self.cache.set(
                prompt,
                response.content,
                cache_purpose,
                model=response.model_used,
                tokens_used=response.tokens_used,
                message_id=message_id,
            )
        return JSONResult(data=data, response=response)

    def _attempt(self, request: ModelRequest, schema: type[T]) -> tuple[T, ModelResponse]:
        self.calls += 1
        response = self.client.complete(request, response_schema=schema_hint(schema))
        if response.tokens_used:
            self.tokens_used += response.tokens_used
        if not response.content or not response.content.strip():
            raise TransientModelError("Empty response from model")
        return parse_json_payload(response.content, schema), response

    def _from_cache(self, prompt: str, schema: type[T], purpose: str, model: str) -> JSONResult[T] | None:
        assert self.cache is not None
        entry = self.cache.get(prompt, purpose)
        if entry is None:
            return None
        try:
            data = parse_json_payload(entry.response, schema)
        except ModelInvocationError as exc:
            logger.warning("ignoring unusable cache entry", purpose=purpose, hash=entry.hash[:12], error=str(exc))
            return None
        self.cache_hits += 1
        response = ModelResponse(
            content=entry.response,
            model_used=entry.model or model,
            tokens_used=entry.tokens_used,
            finish_reason="CACHED",
        )
        return JSONResult(data=data, response=response)

    @staticmethod
    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0
        logger.warning(
            "transient model error, retrying",
            attempt=state.attempt_number,
            delay_s=delay,
            error=str(exc),
        )


__all__ = ["ModelInvocationService", "parse_json_payload"]
