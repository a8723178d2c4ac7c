"""
Documentation proposal and review log repositories.
"""

from sqlalchemy import func
from sqlalchemy.orm import Session

from docsyphon.db.repositories.base import BaseRepository
from docsyphon.models.db import DocProposal, ProposalReviewLog, ProposalStatus


class ProposalRepository(BaseRepository[DocProposal]):
    """Repository for DocProposal model."""

    def __init__(self, session: Session):
        super().__init__(DocProposal, session)

    def get_by_conversation(self, conversation_id: str) -> list[DocProposal]:
        return (
            self.session.query(DocProposal)
            .filter(DocProposal.conversation_id == conversation_id)
            .order_by(DocProposal.created_at, DocProposal.page)
            .all()
        )

    def count_pending(self) -> int:
        """Count proposals still waiting for review."""
        return (
            self.session.query(func.count(DocProposal.id))
            .filter(DocProposal.status == ProposalStatus.PENDING.value)
            .scalar()
            or 0
        )

    def delete_for_conversation(self, conversation_id: str) -> int:
        """
        Remove proposals and review logs left by an earlier attempt.

        Returns:
            Number of proposals deleted
        """
        self.session.query(ProposalReviewLog).filter(
            ProposalReviewLog.conversation_id == conversation_id
        ).delete(synchronize_session=False)
        deleted = (
            self.session.query(DocProposal)
            .filter(DocProposal.conversation_id == conversation_id)
            .delete(synchronize_session=False)
        )
        self.session.flush()
        return deleted


class ReviewLogRepository(BaseRepository[ProposalReviewLog]):
    """Repository for ProposalReviewLog model."""

    def __init__(self, session: Session):
        super().__init__(ProposalReviewLog, session)

    def get_by_conversation(self, conversation_id: str) -> list[ProposalReviewLog]:
        return (
            self.session.query(ProposalReviewLog)
            .filter(ProposalReviewLog.conversation_id == conversation_id)
            .order_by(ProposalReviewLog.created_at)
            .all()
        )

    def get_rejected(self, limit: int = 100) -> list[ProposalReviewLog]:
        return (
            self.session.query(ProposalReviewLog)
            .filter(ProposalReviewLog.rejected.is_(True))
            .order_by(ProposalReviewLog.created_at.desc())
            .limit(limit)
            .all()
        )
