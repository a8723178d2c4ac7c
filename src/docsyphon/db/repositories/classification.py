"""
Message classification repository.
"""

from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from docsyphon.db.repositories.base import BaseRepository
from docsyphon.models.db import MessageClassification


class ClassificationRepository(BaseRepository[MessageClassification]):
    """Repository for MessageClassification model."""

    def __init__(self, session: Session):
        super().__init__(MessageClassification, session)

    def get_by_message(self, message_id: int) -> Optional[MessageClassification]:
        return (
            self.session.query(MessageClassification)
            .filter(MessageClassification.message_id == message_id)
            .first()
        )

    def get_by_conversation(self, conversation_id: str) -> list[MessageClassification]:
        return (
            self.session.query(MessageClassification)
            .filter(MessageClassification.conversation_id == conversation_id)
            .order_by(MessageClassification.message_id)
            .all()
        )

    def upsert(
        self,
        message_id: int,
        batch_id: str,
        category: str,
        doc_value_reason: str,
        conversation_id: Optional[str] = None,
        rag_search_criteria: Optional[dict[str, Any]] = None,
        model_used: Optional[str] = None,
    ) -> MessageClassification:
        """
        Insert or replace the classification of one message.

        Args:
            message_id: Classified message
            batch_id: Batch the classification came from
            category: Thread category ('no-doc-value' for discarded threads)
            doc_value_reason: Why the thread does or does not have doc value
            conversation_id: Conversation the message was assembled into
            rag_search_criteria: Search hints for valuable threads
            model_used: Classification model

        Returns:
            The stored classification
        """
        existing = self.get_by_message(message_id)
        values = {
            "batch_id": batch_id,
            "category": category,
            "doc_value_reason": doc_value_reason,
            "conversation_id": conversation_id,
            "rag_search_criteria": rag_search_criteria,
            "model_used": model_used,
        }
        if existing is None:
            return self.create(message_id=message_id, **values)

        for key, value in values.items():
            setattr(existing, key, value)
        self.session.flush()
        return existing

    def delete_for_messages(self, message_ids: Iterable[int]) -> int:
        """
        Delete classifications for the given messages so they get reclassified.

        Returns:
            Number of rows deleted
        """
        ids = list(message_ids)
        if not ids:
            return 0
        deleted = (
            self.session.query(MessageClassification)
            .filter(MessageClassification.message_id.in_(ids))
            .delete(synchronize_session=False)
        )
        self.session.flush()
        return deleted
