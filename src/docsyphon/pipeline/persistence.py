"""
Persistence of pipeline results.

Classification rows are written right after classification. Each
conversation is then persisted inside its own savepoint, so one failing
conversation never loses the work of its siblings in the same batch.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from docsyphon.db.repositories import (
    ClassificationRepository,
    MessageRepository,
    ProposalRepository,
    RagContextRepository,
    ReviewLogRepository,
)
from docsyphon.models.db import ProposalStatus
from docsyphon.models.pipeline import (
    ConversationGroup,
    ConversationOutcome,
    ReviewedProposal,
    SearchHit,
)
from docsyphon.pipeline.classifier import BatchClassification
from docsyphon.quality.ruleset import ParsedRuleset
from docsyphon.utils.time import utc_now

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 200
CONTENT_PREVIEW_CHARS = 1000
CHARS_PER_TOKEN = 4
NO_VALUE_REASON = "Classified as no documentation value"


def truncate_summary(summary: Optional[str]) -> Optional[str]:
    if summary is None or len(summary) <= SUMMARY_MAX_CHARS:
        return summary
    return summary[: SUMMARY_MAX_CHARS - 3] + "..."


def estimate_tokens(docs: list[SearchHit]) -> int:
    """Rough token count of the docs sent to the model."""
    return math.ceil(sum(len(doc.content) for doc in docs) / CHARS_PER_TOKEN)


def docs_payload(docs: list[SearchHit]) -> list[dict[str, Any]]:
    """Stored form of retrieved docs: metadata plus a content preview."""
    payload = []
    for doc in docs:
        preview = doc.content[:CONTENT_PREVIEW_CHARS]
        if len(doc.content) > CONTENT_PREVIEW_CHARS:
            preview += "..."
        payload.append(
            {
                "doc_id": doc.id,
                "title": doc.title,
                "file_path": doc.file_path,
                "similarity": doc.similarity,
                "content_preview": preview,
            }
        )
    return payload


@dataclass
class PersistedCounts:
    proposals_created: int = 0
    proposals_rejected: int = 0


class PipelinePersistence:
    """Writes classification, retrieval context, proposals and review logs."""

    def __init__(self, session: Session):
        self.session = session
        self.messages = MessageRepository(session)
        self.classifications = ClassificationRepository(session)
        self.rag_contexts = RagContextRepository(session)
        self.proposals = ProposalRepository(session)
        self.review_logs = ReviewLogRepository(session)

    def save_classifications(
        self,
        classification: BatchClassification,
        conversations: list[ConversationGroup],
        batch_id: str,
    ) -> int:
        """
        Upsert one classification row per classified batch message.

        Messages of safety-net threads get no conversation id.

        Returns:
            Number of rows written
        """
        conversation_of = {
            message_id: conversation.id
            for conversation in conversations
            if not conversation.synthetic
            for message_id in conversation.message_ids
        }

        written = 0
        for thread, synthetic in classification.all_threads:
            criteria = None
            if thread.has_doc_value and thread.rag_search_criteria is not None:
                criteria = thread.rag_search_criteria.model_dump()
            for message_id in thread.message_ids:
                self.classifications.upsert(
                    message_id=message_id,
                    batch_id=batch_id,
                    category=thread.category,
                    doc_value_reason=thread.doc_value_reason,
                    conversation_id=None if synthetic else conversation_of.get(message_id),
                    rag_search_criteria=criteria,
                    model_used=classification.model_used,
                )
                written += 1

        logger.info(
            f"Stored {written} classifications for batch {batch_id} "
            f"({len(classification.synthetic_threads)} fallback)"
        )
        return written

    def save_discarded(self, conversation: ConversationGroup, batch_id: str) -> None:
        """Complete a conversation that will not produce proposals."""
        savepoint = self.session.begin_nested()
        try:
            if not conversation.synthetic:
                self.rag_contexts.upsert(
                    conversation_id=conversation.id,
                    batch_id=batch_id,
                    retrieved_docs=[],
                    total_tokens=0,
                    summary=truncate_summary(conversation.summary),
                    proposals_rejected=True,
                    rejection_reason=conversation.doc_value_reason or NO_VALUE_REASON,
                )
                self.proposals.delete_for_conversation(conversation.id)
            self.messages.mark_completed(conversation.message_ids)
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            raise
        logger.debug(
            f"Discarded conversation {conversation.id}: {conversation.doc_value_reason}"
        )

    def save_outcome(
        self,
        outcome: ConversationOutcome,
        batch_id: str,
        ruleset: Optional[ParsedRuleset] = None,
    ) -> PersistedCounts:
        """
        Persist a prepared conversation and complete its messages.

        Proposals left by an earlier attempt are replaced. Proposals rejected
        by the ruleset are not stored; their review logs are.

        Returns:
            Counts of stored and ruleset-rejected proposals
        """
        conversation = outcome.conversation
        counts = PersistedCounts()

        savepoint = self.session.begin_nested()
        try:
            self.rag_contexts.upsert(
                conversation_id=conversation.id,
                batch_id=batch_id,
                retrieved_docs=docs_payload(outcome.docs),
                total_tokens=estimate_tokens(outcome.docs),
                summary=truncate_summary(conversation.summary),
                proposals_rejected=outcome.proposals_rejected,
                rejection_reason=outcome.rejection_reason,
            )
            self.proposals.delete_for_conversation(conversation.id)

            for proposal in outcome.proposals:
                if proposal.rejected:
                    counts.proposals_rejected += 1
                    proposal_id = None
                else:
                    proposal_id = self._create_proposal(proposal, outcome, batch_id).id
                    counts.proposals_created += 1
                if proposal.review is not None:
                    self._create_review_log(proposal, proposal_id, conversation.id, batch_id, ruleset)

            self.messages.mark_completed(conversation.message_ids)
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            raise

        rejection = f" (Rejected: {outcome.rejection_reason})" if outcome.proposals_rejected else ""
        logger.info(
            f"Conversation {conversation.id} complete. Stored "
            f"{counts.proposals_created} proposals{rejection}"
        )
        return counts

    def _create_proposal(
        self, proposal: ReviewedProposal, outcome: ConversationOutcome, batch_id: str
    ):
        draft = proposal.draft
        return self.proposals.create(
            conversation_id=outcome.conversation.id,
            batch_id=batch_id,
            update_type=draft.update_type,
            page=draft.page,
            section=draft.section,
            location=draft.location.model_dump() if draft.location else None,
            suggested_text=proposal.suggested_text,
            raw_suggested_text=draft.suggested_text,
            reasoning=draft.reasoning,
            source_messages=list(draft.source_messages or []),
            warnings=list(proposal.warnings),
            enrichment=proposal.enrichment.to_dict() if proposal.enrichment else None,
            model_used=outcome.model_used,
            status=ProposalStatus.PENDING.value,
        )

    def _create_review_log(
        self,
        proposal: ReviewedProposal,
        proposal_id,
        conversation_id: str,
        batch_id: str,
        ruleset: Optional[ParsedRuleset],
    ) -> None:
        review = proposal.review
        version = ruleset.version if ruleset and ruleset.version else utc_now()
        self.review_logs.create(
            proposal_id=proposal_id,
            conversation_id=conversation_id,
            batch_id=batch_id,
            page=proposal.draft.page,
            ruleset_version=version,
            original_content=review.original_content,
            modifications_applied=list(review.modifications_applied),
            rejected=review.rejected,
            rejection_rule=review.rejection_rule,
            rejection_reason=review.rejection_reason,
            quality_flags=list(review.quality_flags),
        )

    def purge_failed(self, message_ids: list[int]) -> int:
        """Delete classifications of failed messages so the next run reclassifies them."""
        deleted = self.classifications.delete_for_messages(message_ids)
        logger.info(f"Purged {deleted} classifications for {len(message_ids)} failed messages")
        return deleted
