"""
Ruleset review of enriched proposals.

Rejection rules are checked in order and the first match rejects the
proposal. Quality gates never reject; each matching gate adds a flag for the
human reviewer. Evaluation is heuristic: rules only see the enrichment
signals and the proposal text.
"""

import logging
from typing import Optional

from docsyphon.models.pipeline import ProposalEnrichment, ReviewResult
from docsyphon.quality.ruleset import CompiledRule, ParsedRuleset, RuleKind

logger = logging.getLogger(__name__)


def check_rejection(
    rule: CompiledRule,
    enrichment: ProposalEnrichment,
    text: str,
    page: str,
) -> Optional[str]:
    """Return the rejection reason if rule matches, else None."""
    if rule.kind is RuleKind.DUPLICATION_OVERLAP:
        warning = enrichment.duplication_warning
        if warning is not None and warning.overlap_percentage > rule.threshold:
            matching = warning.matching_page or warning.best_match_page or page
            return (
                f"Duplicate content detected: {warning.overlap_percentage}% "
                f"overlap with {matching}"
            )

    elif rule.kind is RuleKind.SIMILARITY:
        for doc in enrichment.related_docs:
            if doc.similarity > rule.threshold:
                return (
                    f"High similarity with existing doc: "
                    f"{round(doc.similarity * 100)}% match with {doc.page}"
                )

    elif rule.kind is RuleKind.CONTENT_PATTERN:
        if rule.pattern and rule.pattern in text.lower():
            return f'Content matches rejection pattern: "{rule.pattern}"'

    return None


def check_quality_gate(rule: CompiledRule, enrichment: ProposalEnrichment) -> Optional[str]:
    """Return the quality flag if gate matches, else None."""
    if rule.kind is RuleKind.STYLE_NOTES:
        notes = enrichment.style_analysis.consistency_notes
        if notes:
            return f"Style review: {'; '.join(notes)}"

    elif rule.kind is RuleKind.CHANGE_PERCENTAGE:
        change = enrichment.change_context.change_percentage
        if change > rule.threshold:
            return f"Significant change: {change}% modification"

    elif rule.kind is RuleKind.PENDING_PROPOSALS:
        pending = enrichment.change_context.other_pending_proposals
        if pending > 0:
            return f"Coordination needed: {pending} other pending proposals"

    elif rule.kind is RuleKind.MESSAGE_COUNT:
        count = enrichment.source_analysis.message_count
        if count < rule.threshold:
            return f"Limited evidence: only {count} messages"

    return None


def review_proposal(
    ruleset: ParsedRuleset,
    enrichment: ProposalEnrichment,
    text: Optional[str],
    page: str,
) -> ReviewResult:
    """
    Evaluate a ruleset against one enriched proposal.

    Args:
        ruleset: Parsed tenant ruleset
        enrichment: Enrichment computed for the proposal
        text: Proposal text after post-processing
        page: Target page

    Returns:
        ReviewResult; rejected results carry the matching rule and reason
    """
    text = text or ""
    result = ReviewResult(original_content=text)

    for rule in ruleset.rejection_rules:
        reason = check_rejection(rule, enrichment, text, page)
        if reason:
            result.rejected = True
            result.rejection_rule = rule.text
            result.rejection_reason = reason
            logger.info(f"Rejected proposal for {page}: {reason}")
            return result

    for gate in ruleset.quality_gates:
        flag = check_quality_gate(gate, enrichment)
        if flag:
            result.quality_flags.append(flag)

    return result
