"""Request and response types for model invocation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from docmine.lib.json import dumps

T = TypeVar("T", bound=BaseModel)


class HistoryTurn(BaseModel):
    role: str
    content: str


class ModelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model: str
    system_prompt: str = Field(alias="systemPrompt")
    user_prompt: str = Field(alias="userPrompt")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8192, ge=1, alias="maxTokens")
    history: list[HistoryTurn] = Field(default_factory=list)

    @property
    def prompt_text(self) -> str:
        """The full prompt text used as the cache key.

        Prior turns, when present, sit between the system and user prompts so
        two requests that differ only in history never share a cache entry.
        """
        if not self.history:
            return f"{self.system_prompt}\n\n{self.user_prompt}"
        history = dumps([turn.model_dump() for turn in self.history])
        return f"{self.system_prompt}\n\n{history}\n\n{self.user_prompt}"


class ModelResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    content: str
    model_used: str = Field(alias="modelUsed")
    tokens_used: int | None = Field(default=None, alias="tokensUsed")
    finish_reason: str | None = Field(default=None, alias="finishReason")


@dataclass(frozen=True)
class JSONResult(Generic[T]):
    """Validated payload plus the raw response it came from."""

    data: T
    response: ModelResponse

    @property
    def cached(self) -> bool:
        return self.response.finish_reason == "CACHED"


def schema_hint(schema: type[BaseModel]) -> dict[str, Any]:
    """JSON schema for a response model, suitable for structured-output APIs."""
    return schema.model_json_schema(by_alias=True)


__all__ = ["HistoryTurn", "JSONResult", "ModelRequest", "ModelResponse", "schema_hint"]
