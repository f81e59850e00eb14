"""Retrieval service contract.

The documentation index and vector store live outside docmine. Anything
that can answer ``search(query, top_k)`` with scored documents can back
the enrichment step: a vector database client, a sqlite FTS index, or an
in-memory fake in tests.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class RagDocument(BaseModel):
    """A retrieved documentation page with its similarity to the query."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    title: str
    file_path: str = Field(alias="filePath")
    content: str
    similarity: float = Field(ge=0.0, le=1.0)


@runtime_checkable
class RetrievalService(Protocol):
    """Similarity search over the documentation corpus.

    Implementations must return at most ``top_k`` documents ordered by
    descending similarity. Raising is allowed; the enrichment step records
    the failure against the thread and moves on.
    """

    def search(self, query: str, top_k: int) -> list[RagDocument]:
        """Return up to ``top_k`` documents most similar to ``query``."""
        ...
