"""
Tenant ruleset parsing and caching.

A ruleset is a markdown document with four sections::

    ## PROMPT_CONTEXT
    - Prefer short, task-oriented examples

    ## REVIEW_MODIFICATIONS
    - Replace "click on" with "click"

    ## REJECTION_RULES
    - Reject if duplicationWarning.overlapPercentage > 80
    - Reject if relatedDocs similarityScore > 0.9
    - Reject proposals mentioning "beta feature"

    ## QUALITY_GATES
    - Flag if styleAnalysis.consistencyNotes is not empty
    - Flag if changeContext.changePercentage > 50
    - Flag if otherPendingProposals > 0
    - Flag if sourceAnalysis.messageCount < 2

Rules are plain language. Each line is compiled once into a tagged rule
(kind, threshold, pattern) that review.py evaluates without re-parsing text.
Lines that match no known shape compile to UNRECOGNIZED and never fire.
"""

import enum
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from docsyphon.db.repositories.ruleset import RulesetRepository
from docsyphon.utils.time import as_utc

logger = logging.getLogger(__name__)

SECTIONS = ("PROMPT_CONTEXT", "REVIEW_MODIFICATIONS", "REJECTION_RULES", "QUALITY_GATES")

_SECTION_HEADER = re.compile(r"^##\s+([A-Z_]+)\s*$")
_BULLET = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_GREATER_INT = re.compile(r">\s*(\d+)")
_GREATER_NUMBER = re.compile(r">\s*(\d*\.?\d+)")
_LESS_INT = re.compile(r"<\s*(\d+)")
_CONTENT_PATTERN = re.compile(r"(?:mentioning|containing)\s+[\"']?([^\"']+)[\"']?", re.IGNORECASE)

DEFAULT_OVERLAP_THRESHOLD = 80.0
DEFAULT_SIMILARITY_THRESHOLD = 0.85
DEFAULT_CHANGE_THRESHOLD = 50.0


class RuleKind(str, enum.Enum):
    """What a compiled rule inspects."""

    DUPLICATION_OVERLAP = "duplication_overlap"
    SIMILARITY = "similarity"
    CONTENT_PATTERN = "content_pattern"
    STYLE_NOTES = "style_notes"
    CHANGE_PERCENTAGE = "change_percentage"
    PENDING_PROPOSALS = "pending_proposals"
    MESSAGE_COUNT = "message_count"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class CompiledRule:
    kind: RuleKind
    text: str
    threshold: Optional[float] = None
    pattern: Optional[str] = None


@dataclass
class ParsedRuleset:
    """A tenant ruleset, split into sections and compiled."""

    version: Optional[datetime] = None
    prompt_context: list[str] = field(default_factory=list)
    review_modifications: list[str] = field(default_factory=list)
    rejection_rules: list[CompiledRule] = field(default_factory=list)
    quality_gates: list[CompiledRule] = field(default_factory=list)

    @property
    def has_review_rules(self) -> bool:
        return bool(self.rejection_rules or self.quality_gates)


def _threshold(pattern: re.Pattern, text: str, default: Optional[float]) -> Optional[float]:
    match = pattern.search(text)
    return float(match.group(1)) if match else default


def compile_rejection_rule(text: str) -> CompiledRule:
    lowered = text.lower()
    if "duplicationwarning" in lowered and "overlappercentage" in lowered:
        return CompiledRule(
            RuleKind.DUPLICATION_OVERLAP,
            text,
            threshold=_threshold(_GREATER_INT, text, DEFAULT_OVERLAP_THRESHOLD),
        )
    if "similarityscore" in lowered:
        return CompiledRule(
            RuleKind.SIMILARITY,
            text,
            threshold=_threshold(_GREATER_NUMBER, text, DEFAULT_SIMILARITY_THRESHOLD),
        )
    if "proposals mentioning" in lowered or "containing" in lowered:
        match = _CONTENT_PATTERN.search(text)
        if match and match.group(1).strip():
            return CompiledRule(
                RuleKind.CONTENT_PATTERN, text, pattern=match.group(1).strip().lower()
            )
    return CompiledRule(RuleKind.UNRECOGNIZED, text)


def compile_quality_gate(text: str) -> CompiledRule:
    lowered = text.lower()
    if "consistencynotes" in lowered and "not empty" in lowered:
        return CompiledRule(RuleKind.STYLE_NOTES, text)
    if "changepercentage" in lowered:
        return CompiledRule(
            RuleKind.CHANGE_PERCENTAGE,
            text,
            threshold=_threshold(_GREATER_INT, text, DEFAULT_CHANGE_THRESHOLD),
        )
    if "otherpendingproposals" in lowered and re.search(r">\s*0\b", text):
        return CompiledRule(RuleKind.PENDING_PROPOSALS, text, threshold=0)
    if "messagecount" in lowered:
        threshold = _threshold(_LESS_INT, text, None)
        if threshold is not None:
            return CompiledRule(RuleKind.MESSAGE_COUNT, text, threshold=threshold)
    return CompiledRule(RuleKind.UNRECOGNIZED, text)


def split_sections(content: str) -> dict[str, list[str]]:
    """
    Split ruleset markdown into its known sections.

    Each non-empty line under a known ``## SECTION`` header becomes one
    entry, with any list marker removed. Unknown sections are ignored.
    """
    sections: dict[str, list[str]] = {name: [] for name in SECTIONS}
    current: Optional[str] = None
    for raw_line in content.splitlines():
        header = _SECTION_HEADER.match(raw_line.strip())
        if header:
            current = header.group(1) if header.group(1) in sections else None
            continue
        if raw_line.lstrip().startswith("#"):
            current = None
            continue
        if current is None or not raw_line.strip():
            continue
        sections[current].append(_BULLET.sub("", raw_line).strip())
    return sections


def parse_ruleset(content: str, version: Optional[datetime] = None) -> ParsedRuleset:
    sections = split_sections(content)
    ruleset = ParsedRuleset(
        version=version,
        prompt_context=sections["PROMPT_CONTEXT"],
        review_modifications=sections["REVIEW_MODIFICATIONS"],
        rejection_rules=[compile_rejection_rule(r) for r in sections["REJECTION_RULES"]],
        quality_gates=[compile_quality_gate(r) for r in sections["QUALITY_GATES"]],
    )
    unrecognized = [
        rule.text
        for rule in ruleset.rejection_rules + ruleset.quality_gates
        if rule.kind is RuleKind.UNRECOGNIZED
    ]
    if unrecognized:
        logger.debug(f"Ruleset has {len(unrecognized)} unrecognized rules: {unrecognized}")
    return ruleset


class RulesetCache:
    """Per-tenant ruleset cache with a TTL and explicit invalidation.

    Rule edits take effect within one TTL window, or immediately after
    ``clear``.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Optional[ParsedRuleset]]] = {}
        self._lock = threading.Lock()

    def get(self, session: Session, tenant_id: str) -> Optional[ParsedRuleset]:
        """
        Get a tenant's parsed ruleset, loading it when missing or stale.

        Returns:
            ParsedRuleset, or None if the tenant has no ruleset
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(tenant_id)
            if entry is not None and now - entry[0] < self.ttl_seconds:
                return entry[1]

        row = RulesetRepository(session).get_for_tenant(tenant_id)
        parsed = parse_ruleset(row.content, as_utc(row.updated_at)) if row else None

        with self._lock:
            self._entries[tenant_id] = (now, parsed)
        logger.debug(f"Loaded ruleset for tenant {tenant_id} (found={parsed is not None})")
        return parsed

    def clear(self, tenant_id: Optional[str] = None) -> None:
        """Drop one tenant's cached ruleset, or all of them."""
        with self._lock:
            if tenant_id is None:
                self._entries.clear()
            else:
                self._entries.pop(tenant_id, None)
