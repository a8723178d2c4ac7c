"""
Text heuristics used by proposal enrichment.

Everything here is pure and cheap: word n-gram overlap for duplication, and
a handful of style metrics for comparing a proposal with its target page.
"""

import re

from docsyphon.models.pipeline import StyleMetrics

_WORD = re.compile(r"[a-z0-9][a-z0-9'_-]*")
_FENCED_CODE = re.compile(r"```.*?(?:```|\Z)", re.DOTALL)
_INDENTED_CODE = re.compile(r"^(?: {4}|\t)\S", re.MULTILINE)
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_SENTENCE_END = re.compile(r"[.!?]+(?=\s|$)")
_LIST_ITEM = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_CLI_FLAG = re.compile(r"(?<!\w)--?[a-zA-Z][\w-]*")
_IDENTIFIER = re.compile(r"\b(?:[a-z]+_[a-z0-9_]+|[a-z]+[A-Z]\w*|\w+\.\w+\(\)?)\b")
_ACRONYM = re.compile(r"\b[A-Z]{2,6}s?\b")

# Markers per 100 words
ADVANCED_DENSITY = 8.0
INTERMEDIATE_DENSITY = 3.0


def tokenize_words(text: str) -> list[str]:
    return _WORD.findall(text.lower())


def word_ngrams(words: list[str], n: int) -> set[tuple[str, ...]]:
    if len(words) < n:
        return set()
    return {tuple(words[i : i + n]) for i in range(len(words) - n + 1)}


def ngram_overlap(text: str, other: str, n: int = 3) -> int:
    """
    Percentage of text's word n-grams that also appear in other.

    Returns:
        Integer percentage 0-100 (0 when text has fewer than n words)
    """
    grams = word_ngrams(tokenize_words(text), n)
    if not grams:
        return 0
    other_grams = word_ngrams(tokenize_words(other), n)
    shared = len(grams & other_grams)
    return round(100 * shared / len(grams))


def strip_code(text: str) -> str:
    return _FENCED_CODE.sub(" ", text)


def avg_sentence_length(text: str) -> float:
    """Average words per sentence, ignoring fenced code."""
    prose = strip_code(text)
    sentences = [s for s in _SENTENCE_END.split(prose) if tokenize_words(s)]
    if not sentences:
        return 0.0
    total_words = sum(len(tokenize_words(s)) for s in sentences)
    return round(total_words / len(sentences), 1)


def has_code_examples(text: str) -> bool:
    return "```" in text or "<code>" in text or bool(_INDENTED_CODE.search(text))


def detect_format_pattern(text: str) -> str:
    """Classify text as 'list', 'mixed' or 'prose' by its share of list lines."""
    lines = [line for line in strip_code(text).splitlines() if line.strip()]
    if not lines:
        return "prose"
    list_lines = sum(1 for line in lines if _LIST_ITEM.match(line))
    ratio = list_lines / len(lines)
    if ratio >= 0.6:
        return "list"
    if ratio > 0.2:
        return "mixed"
    return "prose"


def estimate_technical_depth(text: str) -> str:
    """Rough 'basic' / 'intermediate' / 'advanced' rating from technical markers."""
    words = tokenize_words(text)
    if not words:
        return "basic"

    code_blocks = len(_FENCED_CODE.findall(text))
    prose = strip_code(text)
    markers = (
        code_blocks * 5
        + len(_INLINE_CODE.findall(prose))
        + len(_CLI_FLAG.findall(prose))
        + len(_IDENTIFIER.findall(prose))
        + len(_ACRONYM.findall(prose))
    )
    density = markers * 100 / len(words)
    if density >= ADVANCED_DENSITY:
        return "advanced"
    if density >= INTERMEDIATE_DENSITY:
        return "intermediate"
    return "basic"


def analyze_style(text: str) -> StyleMetrics:
    return StyleMetrics(
        avg_sentence_length=avg_sentence_length(text),
        uses_code_examples=has_code_examples(text),
        format_pattern=detect_format_pattern(text),
        technical_depth=estimate_technical_depth(text),
    )
