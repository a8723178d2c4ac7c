"""
Post-processing of LLM-generated proposal text.

Models regularly drop line breaks between list items, after headings and
around labels like "Solution:". These processors put them back. The list
processor runs on every target; the markdown processor only on .md/.mdx
pages.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIXES = (".md", ".mdx")

_LABELS = r"(?:Cause|Solution|Note|Warning|Important|Example)"
_SECTION_TITLES = (
    r"Troubleshooting|Overview|Prerequisites|Installation|Configuration|Usage|"
    r"Examples?|Summary|Conclusion|Introduction|Background|Requirements|Setup|"
    r"Notes?|Tips?|Warnings?|Errors?|Solutions?|Steps|Instructions"
)

# (pattern, replacement) pairs applied in order
LIST_FIXES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\\n"), "\n"),  # Literal escaped newlines
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

MARKDOWN_FIXES: list[tuple[re.Pattern, str]] = [
    # "## ConsiderationsThe text"
    (re.compile(r"(#{1,6}\s[^\n]*?)([a-z])([A-Z])", re.MULTILINE), r"\1\2\n\n\3"),
    # "***Title***Cause:" and "**Title:**While"
    (re.compile(r"(\*{2,3}[^*\n]+\*{2,3})([A-Z])"), r"\1\n\n\2"),
    (re.compile(r"(\*{2,3}[^*\n]+:\*{2,3})([A-Z])"), r"\1\n\n\2"),
    # ":::note Title:::For macOS"
    (re.compile(r"(:::[a-z]+[^:]*:::)([A-Z])", re.IGNORECASE), r"\1\n\n\2"),
    # "TroubleshootingIf you"
    (re.compile(rf"\b({_SECTION_TITLES})([A-Z][a-z])"), r"\1\n\n\2"),
    # "Cause: These errors" at the start of the text
    (re.compile(rf"^({_LABELS}):[ \t]+(\S)", re.IGNORECASE), r"\1:\n\n\2"),
    # "corrupt state.Solution:1."
    (
        re.compile(rf"([.!?])[ \t]*({_LABELS}(?:\s*\d+)?):[ \t]*(\S)", re.IGNORECASE),
        r"\1\n\n\2:\n\n\3",
    ),
    (
        re.compile(rf"([.!?])({_LABELS}(?:\s*\d+)?):(\S)", re.IGNORECASE),
        r"\1\n\n\2:\n\n\3",
    ),
    # "following:Cause:"
    (
        re.compile(rf"(:)({_LABELS}(?:\s*\d+)?):[ \t]*(\S)", re.IGNORECASE),
        r"\1\n\n\2:\n\n\3",
    ),
    (re.compile(r"\n{3,}"), "\n\n"),
]


@dataclass
class PostProcessResult:
    text: str
    warnings: list[str] = field(default_factory=list)
    was_modified: bool = False


def _apply(fixes: list[tuple[re.Pattern, str]], text: str) -> str:
    for pattern, replacement in fixes:
        text = pattern.sub(replacement, text)
    return text


class ListFormattingPostProcessor:
    """Separates numbered and bulleted list items that run together."""

    name = "list-formatting"

    def should_process(self, page: str) -> bool:
        return True

    def process(self, text: str) -> PostProcessResult:
        if not text:
            return PostProcessResult(text="")
        result = _apply(LIST_FIXES, text)
        return PostProcessResult(text=result, was_modified=result != text)


class MarkdownFormattingPostProcessor:
    """Restores line breaks around headings, admonitions and labels."""

    name = "markdown-formatting"

    def should_process(self, page: str) -> bool:
        return page.lower().endswith(MARKDOWN_SUFFIXES)

    def process(self, text: str) -> PostProcessResult:
        if not text:
            return PostProcessResult(text="")
        result = _apply(MARKDOWN_FIXES, text)
        result = "\n".join(line.rstrip() for line in result.split("\n"))
        return PostProcessResult(text=result, was_modified=result != text)


DEFAULT_PROCESSORS = (ListFormattingPostProcessor(), MarkdownFormattingPostProcessor())


def post_process_proposal(
    text: Optional[str], page: str, processors=DEFAULT_PROCESSORS
) -> PostProcessResult:
    """Run every applicable processor over proposal text, in order."""
    if not text:
        return PostProcessResult(text=text or "")

    current = text
    warnings: list[str] = []
    for processor in processors:
        if not processor.should_process(page):
            continue
        result = processor.process(current)
        warnings.extend(result.warnings)
        current = result.text

    if current != text:
        logger.debug(f"Post-processing reformatted proposal text for {page}")
    return PostProcessResult(text=current, warnings=warnings, was_modified=current != text)
