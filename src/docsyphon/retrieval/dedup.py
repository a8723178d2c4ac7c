"""
Deduplication of vector search results.

A multilingual docs site returns the same page once per locale, plus the
occasional repeated chunk of the same document. Both collapse to a single
canonical hit here.
"""

import re

from docsyphon.models.pipeline import SearchHit

# i18n/<locale>/docusaurus-plugin-content-docs/current/x.md -> docs/x.md
_LOCALE_PREFIX = re.compile(r"^i18n/[^/]+/docusaurus-plugin-content-docs/current/")


def canonical_path(file_path: str) -> str:
    """Map a translated document path onto its base-language path."""
    return _LOCALE_PREFIX.sub("docs/", file_path)


def is_translation(file_path: str) -> bool:
    return file_path.startswith("i18n/")


def deduplicate_docs(hits: list[SearchHit]) -> list[SearchHit]:
    """
    Collapse duplicate and translated results.

    Pass one keeps the highest-similarity hit per document id. Pass two
    groups by canonical path and prefers the base-language document,
    falling back to the higher similarity when both or neither are
    translations.

    Args:
        hits: Raw search results

    Returns:
        Deduplicated hits ordered by similarity, highest first
    """
    by_id: dict[str, SearchHit] = {}
    for hit in hits:
        existing = by_id.get(hit.id)
        if existing is None or hit.similarity > existing.similarity:
            by_id[hit.id] = hit

    by_path: dict[str, SearchHit] = {}
    for hit in by_id.values():
        base = canonical_path(hit.file_path)
        existing = by_path.get(base)
        if existing is None:
            by_path[base] = hit
            continue

        existing_translated = is_translation(existing.file_path)
        hit_translated = is_translation(hit.file_path)
        if existing_translated and not hit_translated:
            by_path[base] = hit
        elif existing_translated == hit_translated and hit.similarity > existing.similarity:
            by_path[base] = hit

    return sorted(by_path.values(), key=lambda h: h.similarity, reverse=True)
