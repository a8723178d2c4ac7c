"""
Proposal enrichment.

Computes the signals reviewers (and the tenant ruleset) use to judge a
proposal: related pages, duplication against existing docs, style fit with
the target page, size of the change, and how much evidence backs it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from docsyphon.models.pipeline import (
    ChangeContext,
    ConversationGroup,
    DuplicationWarning,
    ProposalEnrichment,
    RelatedDoc,
    SearchHit,
    SourceAnalysis,
    StyleAnalysis,
)
from docsyphon.models.schemas import ProposalDraft
from docsyphon.quality.text_analysis import analyze_style, ngram_overlap
from docsyphon.retrieval.dedup import canonical_path

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200
SUMMARY_CHARS = 200
SEMANTIC_MATCH_SIMILARITY = 0.8


@dataclass
class EnrichmentConfig:
    related_doc_min_similarity: float = 0.6
    related_doc_max: int = 5
    duplication_threshold: int = 50
    ngram_size: int = 3


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def find_target_doc(page: str, docs: list[SearchHit]) -> Optional[SearchHit]:
    """The retrieved doc a proposal targets, matched by path or canonical path."""
    for doc in docs:
        if doc.file_path == page:
            return doc
    base = canonical_path(page)
    for doc in docs:
        if canonical_path(doc.file_path) == base:
            return doc
    return None


class ProposalEnricher:
    """Builds ProposalEnrichment for generated proposals."""

    def __init__(self, config: Optional[EnrichmentConfig] = None):
        self.config = config or EnrichmentConfig()

    def enrich(
        self,
        draft: ProposalDraft,
        suggested_text: Optional[str],
        docs: list[SearchHit],
        conversation: ConversationGroup,
        pending_proposals: int = 0,
    ) -> ProposalEnrichment:
        """
        Compute enrichment for one proposal.

        Never raises: a failure yields an empty enrichment so the proposal
        still reaches review.

        Args:
            draft: The generated proposal
            suggested_text: Post-processed proposal text
            docs: Deduplicated docs retrieved for the conversation
            conversation: Source conversation
            pending_proposals: Proposals already awaiting review

        Returns:
            ProposalEnrichment
        """
        text = suggested_text or ""
        try:
            target = find_target_doc(draft.page, docs)
            return ProposalEnrichment(
                related_docs=self.related_docs(draft.page, docs),
                duplication_warning=self.duplication_warning(text, docs),
                style_analysis=self.style_analysis(text, target),
                change_context=self.change_context(
                    draft.update_type, text, target, pending_proposals
                ),
                source_analysis=self.source_analysis(conversation),
            )
        except Exception as e:
            logger.warning(
                f"Enrichment failed for proposal on {draft.page} "
                f"({conversation.id}): {e}",
                exc_info=True,
            )
            return ProposalEnrichment()

    def related_docs(self, page: str, docs: list[SearchHit]) -> list[RelatedDoc]:
        related: list[RelatedDoc] = []
        seen: set[str] = set()
        for doc in sorted(docs, key=lambda d: d.similarity, reverse=True):
            if doc.similarity < self.config.related_doc_min_similarity:
                continue
            if doc.file_path in seen:
                continue
            seen.add(doc.file_path)

            if doc.file_path == page:
                match_type = "same-section"
            elif doc.similarity >= SEMANTIC_MATCH_SIMILARITY:
                match_type = "semantic"
            else:
                match_type = "keyword"

            related.append(
                RelatedDoc(
                    page=doc.file_path,
                    similarity=doc.similarity,
                    match_type=match_type,
                    snippet=_truncate(doc.content, SNIPPET_CHARS),
                )
            )
            if len(related) >= self.config.related_doc_max:
                break
        return related

    def duplication_warning(self, text: str, docs: list[SearchHit]) -> DuplicationWarning:
        best_overlap = 0
        best_doc: Optional[SearchHit] = None
        if text:
            for doc in docs:
                overlap = ngram_overlap(text, doc.content, self.config.ngram_size)
                if overlap > best_overlap:
                    best_overlap = overlap
                    best_doc = doc

        if best_doc is None:
            return DuplicationWarning(detected=False, overlap_percentage=0)

        detected = best_overlap >= self.config.duplication_threshold
        return DuplicationWarning(
            detected=detected,
            overlap_percentage=best_overlap,
            matching_page=best_doc.file_path if detected else None,
            matching_section=best_doc.title if detected else None,
            best_match_page=best_doc.file_path,
            best_match_section=best_doc.title,
        )

    def style_analysis(self, text: str, target: Optional[SearchHit]) -> StyleAnalysis:
        proposal_metrics = analyze_style(text)
        if target is None or not target.content:
            return StyleAnalysis(proposal_metrics=proposal_metrics)

        target_metrics = analyze_style(target.content)
        notes: list[str] = []
        if target_metrics.format_pattern != proposal_metrics.format_pattern:
            notes.append(
                f"Format mismatch: target uses {target_metrics.format_pattern}, "
                f"proposal uses {proposal_metrics.format_pattern}"
            )
        if target_metrics.technical_depth != proposal_metrics.technical_depth:
            notes.append(
                f"Technical depth mismatch: target is {target_metrics.technical_depth}, "
                f"proposal is {proposal_metrics.technical_depth}"
            )
        if target_metrics.uses_code_examples and not proposal_metrics.uses_code_examples:
            notes.append("Target page uses code examples but proposal does not")

        return StyleAnalysis(
            proposal_metrics=proposal_metrics,
            target_page_metrics=target_metrics,
            consistency_notes=notes,
        )

    @staticmethod
    def change_context(
        update_type: str,
        text: str,
        target: Optional[SearchHit],
        pending_proposals: int,
    ) -> ChangeContext:
        target_chars = len(target.content) if target else 0
        proposal_chars = len(text)

        if update_type in ("INSERT", "DELETE") or target_chars == 0:
            change_percentage = 100
        else:
            change_percentage = min(
                100, round(abs(target_chars - proposal_chars) / target_chars * 100)
            )

        return ChangeContext(
            target_section_char_count=target_chars,
            proposal_char_count=proposal_chars,
            change_percentage=change_percentage,
            last_updated=None,
            other_pending_proposals=pending_proposals,
        )

    @staticmethod
    def source_analysis(conversation: ConversationGroup) -> SourceAnalysis:
        authors = {m.author for m in conversation.messages}
        summary = conversation.summary or " ".join(m.content for m in conversation.messages)
        return SourceAnalysis(
            message_count=conversation.message_count,
            unique_authors=len(authors),
            thread_had_consensus=len(authors) >= 2 and conversation.message_count >= 3,
            conversation_summary=_truncate(summary, SUMMARY_CHARS),
        )
