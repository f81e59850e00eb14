"""Retrieval enrichment: attach documentation pages to each thread."""

from __future__ import annotations

import re
from fnmatch import fnmatch

from docmine.pipeline.config import StepConfig, StepType
from docmine.pipeline.context import PipelineContext
from docmine.pipeline.models import ConversationThread, PipelineError
from docmine.pipeline.steps.base import StepMetadata, StepServices, StepSupport, check_positive_int
from docmine.retrieval.protocols import RagDocument

# Docusaurus keeps translations under i18n/<lang>/docusaurus-plugin-content-docs/current/
_DOCUSAURUS_PREFIX_RE = re.compile(r"^i18n/[^/]+/docusaurus-plugin-content-docs/current/")
_I18N_SEGMENT_RE = re.compile(r"(^|/)i18n/[^/]+/")
# A directory named like "es" or "pt-BR"; never the file name itself.
_LOCALE_SEGMENT_RE = re.compile(r"(^|/)[a-z]{2}(?:-[A-Z]{2})?/")
_FALLBACK_QUERY_CHARS = 500


def base_path(file_path: str) -> str:
    """Path of the source-language page a translated page was derived from.

    Recognised layouts, tried in order; only the first that applies is used:

    - ``i18n/fr/docusaurus-plugin-content-docs/current/x.md`` -> ``docs/x.md``
    - ``site/i18n/fr/x.md`` -> ``site/x.md``
    - ``docs/pt-BR/x.md`` -> ``docs/x.md`` (first locale-looking directory)
    """
    for pattern, replacement in (
        (_DOCUSAURUS_PREFIX_RE, "docs/"),
        (_I18N_SEGMENT_RE, r"\1"),
        (_LOCALE_SEGMENT_RE, r"\1"),
    ):
        stripped = pattern.sub(replacement, file_path, count=1)
        if stripped != file_path:
            return stripped
    return file_path


def is_translation(file_path: str) -> bool:
    return base_path(file_path) != file_path


def deduplicate_translations(documents: list[RagDocument]) -> list[RagDocument]:
    """Collapse translated copies of one page.

    The untranslated page wins; between two copies of the same kind the
    higher similarity wins. Output is ordered by descending similarity.
    """
    chosen: dict[str, RagDocument] = {}
    for doc in documents:
        key = base_path(doc.file_path)
        existing = chosen.get(key)
        if existing is None:
            chosen[key] = doc
            continue
        doc_translated = is_translation(doc.file_path)
        existing_translated = is_translation(existing.file_path)
        if (existing_translated and not doc_translated) or (
            doc_translated == existing_translated and doc.similarity > existing.similarity
        ):
            chosen[key] = doc
    return sorted(chosen.values(), key=lambda d: d.similarity, reverse=True)


class RagEnrichStep:
    step_type = StepType.ENRICH.value

    def __init__(self, config: StepConfig, services: StepServices) -> None:
        self.support = StepSupport(config, services)
        self.step_id = config.step_id
        self.top_k = int(self.support.value("topK", 5))
        self.min_similarity = float(self.support.value("minSimilarity", 0.7))
        self.deduplicate = bool(self.support.value("deduplicateTranslations", True))
        path_filters = self.support.value("pathFilters", {}) or {}
        self.include_paths: list[str] = list(path_filters.get("include", []))
        self.exclude_paths: list[str] = list(path_filters.get("exclude", []))

    def build_query(self, context: PipelineContext, thread: ConversationThread) -> str:
        query = thread.rag_search_criteria.query_text()
        if query:
            return query
        # No criteria from the classifier: fall back to the thread's own words.
        text = " ".join(m.content for m in context.thread_messages(thread)) or thread.summary
        return text[:_FALLBACK_QUERY_CHARS]

    def _path_allowed(self, file_path: str) -> bool:
        if self.include_paths and not any(fnmatch(file_path, pattern) for pattern in self.include_paths):
            return False
        return not any(fnmatch(file_path, pattern) for pattern in self.exclude_paths)

    def retrieve(self, context: PipelineContext, thread: ConversationThread) -> list[RagDocument]:
        retrieval = self.support.require_retrieval()
        query = self.build_query(context, thread)
        if not query:
            return []
        # Translations eat into top-K, so over-fetch when collapsing them.
        fetch = self.top_k * 2 if self.deduplicate else self.top_k
        documents = [
            doc
            for doc in retrieval.search(query, fetch)
            if doc.similarity >= self.min_similarity and self._path_allowed(doc.file_path)
        ]
        if self.deduplicate:
            before = len(documents)
            documents = deduplicate_translations(documents)
            if len(documents) < before:
                self.support.log.debug("collapsed translations", thread_id=thread.id, before=before, after=len(documents))
        else:
            documents.sort(key=lambda d: d.similarity, reverse=True)
        return documents[: self.top_k]

    def execute(self, context: PipelineContext) -> PipelineContext:
        self.support.require_retrieval()
        results: dict[str, list[RagDocument]] = {}
        errors: list[PipelineError] = []
        for thread in context.threads:
            try:
                results[thread.id] = self.retrieve(context, thread)
            except Exception as exc:
                errors.append(
                    self.support.error(context, f"Retrieval failed for thread {thread.id}: {exc}", threadId=thread.id)
                )
                results[thread.id] = []
        grounded = sum(1 for docs in results.values() if docs)
        self.support.log.info("enriched threads", threads=len(context.threads), grounded=grounded)
        context.rag_results = results
        context.errors.extend(errors)
        return context

    def validate_config(self, config: StepConfig) -> bool:
        problems: list[str] = []
        check_positive_int(config.config, "topK", problems, maximum=50)
        min_similarity = config.config.get("minSimilarity")
        if min_similarity is not None and (
            not isinstance(min_similarity, (int, float)) or not 0 <= min_similarity <= 1
        ):
            problems.append("minSimilarity must be between 0 and 1")
        path_filters = config.config.get("pathFilters")
        if path_filters is not None and not isinstance(path_filters, dict):
            problems.append("pathFilters must be an object with include/exclude lists")
        for problem in problems:
            self.support.log.error("invalid config", problem=problem)
        return not problems

    def metadata(self) -> StepMetadata:
        return StepMetadata(
            name="RAG Enricher",
            description="Retrieves relevant documentation pages for each thread",
            version="1.0.0",
            requires_retrieval=True,
        )

    def count_input(self, context: PipelineContext) -> int:
        return len(context.threads)

    def count_output(self, context: PipelineContext) -> int:
        return sum(1 for docs in context.rag_results.values() if docs)
