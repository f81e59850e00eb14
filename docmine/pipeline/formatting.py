"""Deterministic clean-up of model-written documentation text.

Models regularly glue list items and headings together ("...done.2. Next
step") or emit literal ``\\n`` sequences. These fixers repair the common
cases without another model call. Each fixer is a plain function
``(text) -> text``; ``apply_fixers`` runs the ones relevant to a page and
reports which of them changed something.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath

_SECTION_WORDS = (
    "Troubleshooting|Overview|Prerequisites|Installation|Configuration|Usage|Examples?|Summary|"
    "Conclusion|Introduction|Background|Requirements|Setup|Notes?|Tips?|Warnings?|Errors?|"
    "Solutions?|Steps|Instructions"
)
_LABELS = "Cause|Solution|Note|Warning|Important|Example"

# (pattern, replacement) pairs applied in order.
_LIST_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\\n"), "\n"),
    (re.compile(r"(\))(\d+\.\s*\*{0,2}\s*[A-Z])"), r"\1\n\n\2"),
    (re.compile(r"([.!?])(\d+\.\s*\*{0,2}\s*[A-Z])"), r"\1\n\n\2"),
    (re.compile(r"([a-z])(\d+\.\s+[A-Z])"), r"\1\n\n\2"),
    (re.compile(r"(\))(-\s+[A-Z])"), r"\1\n\n\2"),
    (re.compile(r"([.!?])(-\s+[A-Z])"), r"\1\n\n\2"),
    (re.compile(r"(:)(\d+\.)"), r"\1\n\n\2"),
    (re.compile(r"(:)(-\s+[A-Z])"), r"\1\n\n\2"),
    (re.compile(r"(:)(\s*\*\s+)"), r"\1\n\n\2"),
    (re.compile(r"(`)\*\s+`"), "\\1\n\n* `"),
    (re.compile(r"([`'\"])\*\s+"), "\\1\n\n* "),
    (re.compile(r"([.!?])\s+(\*\s{2,}\*{0,2}[A-Z])"), r"\1\n\n\2"),
    (re.compile(r"([.!?])\s+(\*\s[A-Z])"), r"\1\n\n\2"),
    (re.compile(r"\n{3,}"), "\n\n"),
]

_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    # "## Heading textNext sentence" -> break after the heading
    (re.compile(r"(#{1,6}\s[^\n]*?)([a-z])([A-Z])", re.MULTILINE), r"\1\2\n\n\3"),
    (re.compile(r"(\*{2,3}[^*\n]+\*{2,3})([A-Z])"), r"\1\n\n\2"),
    (re.compile(r"(\*{2,3}[^*\n]+:\*{2,3})([A-Z])"), r"\1\n\n\2"),
    (re.compile(r"(:::[a-z]+[^:]*:::)([A-Z])", re.IGNORECASE), r"\1\n\n\2"),
    (re.compile(rf"\b({_SECTION_WORDS})([A-Z][a-z])"), r"\1\n\n\2"),
    (re.compile(rf"^((?:{_LABELS})):[ \t]+(\S)", re.IGNORECASE | re.MULTILINE), r"\1:\n\n\2"),
    (re.compile(rf"([.!?])[ \t]*((?:{_LABELS})(?:\s*\d+)?):[ \t]*(\S)", re.IGNORECASE), r"\1\n\n\2:\n\n\3"),
    (re.compile(rf"([.!?])((?:{_LABELS})(?:\s*\d+)?):(\S)", re.IGNORECASE), r"\1\n\n\2:\n\n\3"),
    (re.compile(rf"(:)((?:{_LABELS})(?:\s*\d+)?):[ \t]*(\S)", re.IGNORECASE), r"\1\n\n\2:\n\n\3"),
    (re.compile(r"\n{3,}"), "\n\n"),
]

_MARKDOWN_SUFFIXES = {".md", ".mdx", ".markdown"}


def _apply_rules(text: str, rules: list[tuple[re.Pattern[str], str]]) -> str:
    for pattern, replacement in rules:
        text = pattern.sub(replacement, text)
    return text


def fix_lists(text: str) -> str:
    """Split numbered and bulleted items that ran into the previous sentence."""
    return _apply_rules(text, _LIST_RULES) if text else ""


def fix_markdown(text: str) -> str:
    """Separate headings, bold labels, admonitions and section words from following text."""
    if not text:
        return ""
    fixed = _apply_rules(text, _MARKDOWN_RULES)
    return "\n".join(line.rstrip() for line in fixed.split("\n"))


def is_markdown_page(page: str) -> bool:
    return PurePosixPath(page).suffix.lower() in _MARKDOWN_SUFFIXES


@dataclass(frozen=True)
class Fixer:
    name: str
    apply: Callable[[str], str]
    markdown_only: bool = False


FIXERS: tuple[Fixer, ...] = (
    Fixer("list-formatting", fix_lists),
    Fixer("markdown-formatting", fix_markdown, markdown_only=True),
)


@dataclass
class FormattingResult:
    text: str
    applied: list[str] = field(default_factory=list)

    @property
    def modified(self) -> bool:
        return bool(self.applied)


def apply_fixers(text: str, page: str, fixers: tuple[Fixer, ...] = FIXERS) -> FormattingResult:
    markdown = is_markdown_page(page)
    result = FormattingResult(text=text)
    for fixer in fixers:
        if fixer.markdown_only and not markdown:
            continue
        fixed = fixer.apply(result.text)
        if fixed != result.text:
            result.text = fixed
            result.applied.append(fixer.name)
    return result


__all__ = ["FIXERS", "Fixer", "FormattingResult", "apply_fixers", "fix_lists", "fix_markdown", "is_markdown_page"]
