"""Reviewer context attached to each generated proposal.

Everything here is deterministic text analysis over the proposal, the
documents retrieved for its thread, and the thread's messages. No model
calls. The result travels with the proposal as ``Proposal.enrichment``;
a likely duplicate of existing documentation also becomes a warning.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from docmine.pipeline.models import (
    ChangeContext,
    DuplicationWarning,
    Message,
    Proposal,
    ProposalEnrichment,
    RelatedDoc,
    SourceAnalysis,
    StyleAnalysis,
    StyleMetrics,
    UpdateType,
)
from docmine.retrieval.protocols import RagDocument

RELATED_MIN_SIMILARITY = 0.6
RELATED_MAX_DOCS = 5
SEMANTIC_SIMILARITY = 0.8
SNIPPET_CHARS = 200
DUPLICATION_THRESHOLD = 50
SUMMARY_CHARS = 200

_WORD_RE = re.compile(r"\w+")
_SENTENCE_END_RE = re.compile(r"[.!?]+(?:\s+|$)")
_INDENTED_CODE_RE = re.compile(r"^(?: {4}|\t)\S", re.MULTILINE)
_LINE_KINDS = (
    ("bullets", re.compile(r"^\s*[-*+]\s+")),
    ("numbered", re.compile(r"^\s*\d+[.)]\s+")),
    ("table", re.compile(r"^\s*\|")),
)
# Inline code, CLI flags, call syntax, file names, CONSTANTS.
_TECHNICAL_RE = re.compile(
    r"`[^`\n]+`"
    r"|(?<![\w-])--?[A-Za-z][\w-]*"
    r"|\b\w+\(\)"
    r"|\b[\w-]+\.(?:md|py|js|ts|json|ya?ml|toml|sh|ini|cfg)\b"
    r"|\b[A-Z][A-Z0-9_]{2,}\b"
)


def words(text: str) -> list[str]:
    return [w.lower() for w in _WORD_RE.findall(text)]


def _ngrams(tokens: list[str], n: int) -> set[tuple[str, ...]]:
    return {tuple(tokens[i : i + n]) for i in range(len(tokens) - n + 1)}


def ngram_overlap(text: str, other: str, n: int = 3) -> int:
    """Percentage (0-100) of ``text``'s word n-grams that also occur in ``other``."""
    grams = _ngrams(words(text), n)
    if not grams:
        return 0
    shared = grams & _ngrams(words(other), n)
    return round(100 * len(shared) / len(grams))


def avg_sentence_length(text: str) -> float:
    sentences = [s for s in _SENTENCE_END_RE.split(text) if words(s)]
    if not sentences:
        return 0.0
    return round(sum(len(words(s)) for s in sentences) / len(sentences), 1)


def has_code_examples(text: str) -> bool:
    return "```" in text or bool(_INDENTED_CODE_RE.search(text))


def detect_format_pattern(text: str) -> str:
    """``bullets``, ``numbered`` or ``table`` when such lines make up a third of the text, else ``prose``."""
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return "prose"
    counts = {kind: sum(1 for line in lines if pattern.match(line)) for kind, pattern in _LINE_KINDS}
    kind, count = max(counts.items(), key=lambda item: item[1])
    return kind if count and count * 3 >= len(lines) else "prose"


def estimate_technical_depth(text: str) -> str:
    total = len(words(text))
    if not total:
        return "low"
    markers = len(_TECHNICAL_RE.findall(text)) + 3 * (text.count("```") // 2)
    ratio = markers / total
    if ratio >= 0.1:
        return "high"
    if ratio >= 0.03:
        return "medium"
    return "low"


def style_metrics(text: str) -> StyleMetrics:
    return StyleMetrics(
        avg_sentence_length=avg_sentence_length(text),
        uses_code_examples=has_code_examples(text),
        format_pattern=detect_format_pattern(text),
        technical_depth=estimate_technical_depth(text),
    )


def _target_document(proposal: Proposal, documents: Sequence[RagDocument]) -> RagDocument | None:
    for doc in documents:
        if doc.file_path == proposal.page:
            return doc
    return None


def find_related_docs(proposal: Proposal, documents: Sequence[RagDocument]) -> list[RelatedDoc]:
    related: list[RelatedDoc] = []
    seen: set[str] = set()
    for doc in sorted(documents, key=lambda d: d.similarity, reverse=True):
        if doc.similarity < RELATED_MIN_SIMILARITY or doc.file_path in seen:
            continue
        if doc.file_path == proposal.page:
            match_type = "same-section"
        elif doc.similarity >= SEMANTIC_SIMILARITY:
            match_type = "semantic"
        else:
            match_type = "keyword"
        snippet = doc.content[:SNIPPET_CHARS] + ("..." if len(doc.content) > SNIPPET_CHARS else "")
        related.append(
            RelatedDoc(
                page=doc.file_path,
                section=doc.title,
                similarity_score=doc.similarity,
                match_type=match_type,
                snippet=snippet,
            )
        )
        seen.add(doc.file_path)
        if len(related) >= RELATED_MAX_DOCS:
            break
    return related


def check_duplication(proposal: Proposal, documents: Sequence[RagDocument]) -> DuplicationWarning:
    if not proposal.suggested_text:
        return DuplicationWarning()
    best = 0
    match: RagDocument | None = None
    for doc in documents:
        overlap = ngram_overlap(proposal.suggested_text, doc.content)
        if overlap > best:
            best, match = overlap, doc
    if match is None or best < DUPLICATION_THRESHOLD:
        return DuplicationWarning(overlap_percentage=best)
    return DuplicationWarning(
        detected=True,
        matching_page=match.file_path,
        matching_section=match.title,
        overlap_percentage=best,
    )


def analyze_style(proposal: Proposal, documents: Sequence[RagDocument]) -> StyleAnalysis:
    target = _target_document(proposal, documents)
    target_text = target.content if target else ""
    target_style = style_metrics(target_text)
    proposal_style = style_metrics(proposal.suggested_text or "")
    notes: list[str] = []
    if target_text:
        if target_style.format_pattern != proposal_style.format_pattern:
            notes.append(
                f"Format mismatch: target uses {target_style.format_pattern}, "
                f"proposal uses {proposal_style.format_pattern}"
            )
        if target_style.technical_depth != proposal_style.technical_depth:
            notes.append(
                f"Technical depth mismatch: target is {target_style.technical_depth}, "
                f"proposal is {proposal_style.technical_depth}"
            )
        if target_style.uses_code_examples and not proposal_style.uses_code_examples:
            notes.append("Target page uses code examples but proposal does not")
    return StyleAnalysis(target_page_style=target_style, proposal_style=proposal_style, consistency_notes=notes)


def change_context(proposal: Proposal, documents: Sequence[RagDocument]) -> ChangeContext:
    target = _target_document(proposal, documents)
    target_chars = len(target.content) if target else 0
    proposal_chars = len(proposal.suggested_text or "")
    if proposal.update_type in (UpdateType.INSERT, UpdateType.DELETE):
        percentage = 100
    elif target_chars:
        percentage = round(abs(target_chars - proposal_chars) / target_chars * 100)
    else:
        percentage = 0
    return ChangeContext(
        target_section_char_count=target_chars,
        proposal_char_count=proposal_chars,
        change_percentage=min(percentage, 100),
    )


def analyze_source(messages: Sequence[Message]) -> SourceAnalysis:
    if not messages:
        return SourceAnalysis()
    authors = len({m.author for m in messages})
    text = " ".join(m.content for m in messages)
    summary = text[:SUMMARY_CHARS] + "..." if len(text) > SUMMARY_CHARS else text or "No content"
    return SourceAnalysis(
        message_count=len(messages),
        unique_authors=authors,
        thread_had_consensus=authors >= 2 and len(messages) >= 3,
        conversation_summary=summary,
    )


def enrich_proposal(
    proposal: Proposal,
    documents: Sequence[RagDocument],
    messages: Sequence[Message],
) -> Proposal:
    """Return ``proposal`` with its enrichment attached and a warning if it duplicates a page."""
    if proposal.update_type is UpdateType.NONE:
        return proposal
    enrichment = ProposalEnrichment(
        related_docs=find_related_docs(proposal, documents),
        duplication_warning=check_duplication(proposal, documents),
        style_analysis=analyze_style(proposal, documents),
        change_context=change_context(proposal, documents),
        source_analysis=analyze_source(messages),
    )
    enriched = proposal.model_copy(update={"enrichment": enrichment})
    duplicate = enrichment.duplication_warning
    if duplicate.detected:
        enriched = enriched.with_warning(
            f"Possible duplicate: {duplicate.overlap_percentage}% overlap with {duplicate.matching_page}"
        )
    return enriched


__all__ = [
    "analyze_source",
    "analyze_style",
    "change_context",
    "check_duplication",
    "enrich_proposal",
    "find_related_docs",
    "ngram_overlap",
    "style_metrics",
]
