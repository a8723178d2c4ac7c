"""
Conversation RAG context repository.
"""

from typing import Any, Optional

from sqlalchemy.orm import Session

from docsyphon.db.repositories.base import BaseRepository
from docsyphon.models.db import ConversationRagContext


class RagContextRepository(BaseRepository[ConversationRagContext]):
    """Repository for ConversationRagContext model."""

    def __init__(self, session: Session):
        super().__init__(ConversationRagContext, session)

    def get_by_conversation(
        self, conversation_id: str
    ) -> Optional[ConversationRagContext]:
        return (
            self.session.query(ConversationRagContext)
            .filter(ConversationRagContext.conversation_id == conversation_id)
            .first()
        )

    def upsert(
        self,
        conversation_id: str,
        batch_id: str,
        retrieved_docs: list[dict[str, Any]],
        total_tokens: int,
        summary: Optional[str] = None,
        proposals_rejected: Optional[bool] = None,
        rejection_reason: Optional[str] = None,
    ) -> ConversationRagContext:
        """Insert or replace the retrieval context of a conversation."""
        existing = self.get_by_conversation(conversation_id)
        values = {
            "batch_id": batch_id,
            "retrieved_docs": retrieved_docs,
            "total_tokens": total_tokens,
            "summary": summary,
            "proposals_rejected": proposals_rejected,
            "rejection_reason": rejection_reason,
        }
        if existing is None:
            return self.create(conversation_id=conversation_id, **values)

        for key, value in values.items():
            setattr(existing, key, value)
        self.session.flush()
        return existing

    def get_discarded(self, limit: int = 100) -> list[ConversationRagContext]:
        """Conversations that ended with no proposals to review."""
        return (
            self.session.query(ConversationRagContext)
            .filter(ConversationRagContext.proposals_rejected.is_(True))
            .order_by(ConversationRagContext.created_at.desc())
            .limit(limit)
            .all()
        )
