"""Model invocation: request/response types, client protocol and the JSON service."""

from docmine.llm.models import JSONResult, ModelRequest, ModelResponse
from docmine.llm.protocols import ModelClient
from docmine.llm.service import ModelInvocationService

__all__ = ["JSONResult", "ModelClient", "ModelInvocationService", "ModelRequest", "ModelResponse"]
