"""Protocol for the concrete generative-model client."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from docmine.llm.models import ModelRequest, ModelResponse


@runtime_checkable
class ModelClient(Protocol):
    """A provider SDK adapter.

    ``complete`` performs one remote call and returns the raw text. The
    ``response_schema`` argument is a JSON schema the provider may use for
    structured output; clients that cannot use it ignore it.

    Errors: raise ``TransientModelError`` for rate limits, timeouts and
    network failures. Anything else is treated as permanent.
    """

    def complete(self, request: ModelRequest, *, response_schema: dict[str, Any] | None = None) -> ModelResponse:
        ...
