"""
Per-conversation prepare step.

Retrieval, generation, post-processing, optional LLM rewrites, enrichment
and review for one valuable conversation. Runs on worker threads and never
touches the database session; persistence happens afterwards on the main
thread.
"""

import logging
from typing import Optional, Sequence

from docsyphon.models.pipeline import (
    ConversationGroup,
    ConversationOutcome,
    ReviewedProposal,
    SearchHit,
)
from docsyphon.models.schemas import ProposalDraft
from docsyphon.pipeline.generator import ProposalGenerator
from docsyphon.quality.enrichment import ProposalEnricher
from docsyphon.quality.postprocess import post_process_proposal
from docsyphon.quality.review import review_proposal
from docsyphon.quality.ruleset import ParsedRuleset
from docsyphon.quality.transform import apply_transforms
from docsyphon.retrieval.service import RetrievalService

logger = logging.getLogger(__name__)


class ConversationPreparer:
    """Produces a ConversationOutcome ready for persistence."""

    def __init__(
        self,
        retrieval: RetrievalService,
        generator: ProposalGenerator,
        enricher: Optional[ProposalEnricher] = None,
        transforms: Sequence = (),
    ):
        self.retrieval = retrieval
        self.generator = generator
        self.enricher = enricher or ProposalEnricher()
        self.transforms = tuple(transforms)

    def prepare(
        self,
        conversation: ConversationGroup,
        ruleset: Optional[ParsedRuleset] = None,
        pending_proposals: int = 0,
    ) -> ConversationOutcome:
        """
        Run every in-memory stage for one conversation.

        Raises:
            RetrievalError: If document search failed
            ProposalGenerationError: If proposals could not be generated
        """
        docs = self.retrieval.retrieve(conversation)
        batch = self.generator.generate(conversation, docs, ruleset)
        proposals = [
            self.review_draft(draft, docs, conversation, ruleset, pending_proposals)
            for draft in batch.proposals
        ]

        rejected = sum(1 for p in proposals if p.rejected)
        if rejected:
            logger.info(
                f"Ruleset rejected {rejected}/{len(proposals)} proposals "
                f"for conversation {conversation.id}"
            )
        return ConversationOutcome(
            conversation=conversation,
            docs=docs,
            proposals=proposals,
            proposals_rejected=batch.proposals_rejected,
            rejection_reason=batch.rejection_reason,
            model_used=batch.model_used,
        )

    def review_draft(
        self,
        draft: ProposalDraft,
        docs: list[SearchHit],
        conversation: ConversationGroup,
        ruleset: Optional[ParsedRuleset],
        pending_proposals: int,
    ) -> ReviewedProposal:
        processed = post_process_proposal(draft.suggested_text, draft.page)
        suggested_text = processed.text if draft.suggested_text is not None else None
        warnings = list(draft.warnings or []) + processed.warnings

        if self.transforms and suggested_text:
            rewritten = apply_transforms(
                suggested_text, draft.update_type, draft.page, self.transforms
            )
            suggested_text = rewritten.text
            warnings.extend(rewritten.warnings)

        # NONE proposals only carry the model's reasoning
        if draft.update_type == "NONE":
            return ReviewedProposal(draft=draft, suggested_text=suggested_text, warnings=warnings)

        enrichment = self.enricher.enrich(
            draft, suggested_text, docs, conversation, pending_proposals
        )
        review = None
        if ruleset is not None:
            review = review_proposal(ruleset, enrichment, suggested_text, draft.page)
            warnings.extend(review.quality_flags)

        return ReviewedProposal(
            draft=draft,
            suggested_text=suggested_text,
            warnings=warnings,
            enrichment=enrichment,
            review=review,
        )
