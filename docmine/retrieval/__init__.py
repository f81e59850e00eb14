"""Retrieval capability consumed by the enrichment step."""

from docmine.retrieval.protocols import RagDocument, RetrievalService

__all__ = ["RagDocument", "RetrievalService"]
