"""
Message repository.

Read access to the imported message stream plus the single write the
pipeline is allowed to make: flipping processing status to COMPLETED.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from docsyphon.db.repositories.base import BaseRepository
from docsyphon.models.db import Message, ProcessingStatus

PENDING = ProcessingStatus.PENDING.value
COMPLETED = ProcessingStatus.COMPLETED.value


class MessageRepository(BaseRepository[Message]):
    """Repository for Message model."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def get_streams_with_pending(
        self, exclude: Optional[Iterable[str]] = None
    ) -> list[str]:
        """
        Get distinct stream ids that still have PENDING messages.

        Args:
            exclude: Stream ids to leave out

        Returns:
            Sorted list of stream ids
        """
        query = (
            self.session.query(Message.stream_id)
            .filter(Message.processing_status == PENDING)
            .distinct()
        )
        excluded = list(exclude or [])
        if excluded:
            query = query.filter(Message.stream_id.notin_(excluded))
        return sorted(row[0] for row in query.all())

    def earliest_timestamp(self, stream_id: str) -> Optional[datetime]:
        """Timestamp of the oldest message in a stream, any status."""
        return (
            self.session.query(func.min(Message.timestamp))
            .filter(Message.stream_id == stream_id)
            .scalar()
        )

    def earliest_pending_at_or_after(
        self, stream_id: str, when: datetime
    ) -> Optional[Message]:
        """Oldest PENDING message with timestamp >= when."""
        return (
            self.session.query(Message)
            .filter(
                Message.stream_id == stream_id,
                Message.processing_status == PENDING,
                Message.timestamp >= when,
            )
            .order_by(Message.timestamp, Message.id)
            .first()
        )

    def count_pending_in_range(
        self, stream_id: str, start: datetime, end: datetime
    ) -> int:
        """Count PENDING messages with start <= timestamp < end."""
        return (
            self.session.query(func.count(Message.id))
            .filter(
                Message.stream_id == stream_id,
                Message.processing_status == PENDING,
                Message.timestamp >= start,
                Message.timestamp < end,
            )
            .scalar()
            or 0
        )

    def count_pending(self, stream_id: str) -> int:
        return (
            self.session.query(func.count(Message.id))
            .filter(
                Message.stream_id == stream_id,
                Message.processing_status == PENDING,
            )
            .scalar()
            or 0
        )

    def fetch_pending_page(
        self,
        stream_id: str,
        start: datetime,
        end: datetime,
        limit: int,
        exclude_ids: Optional[Iterable[int]] = None,
    ) -> list[Message]:
        """
        Fetch the next page of PENDING messages inside a window.

        Args:
            stream_id: Stream to read from
            start: Inclusive window start
            end: Exclusive window end
            limit: Maximum number of messages
            exclude_ids: Message ids already attempted in this window

        Returns:
            Messages ordered by timestamp
        """
        query = self.session.query(Message).filter(
            Message.stream_id == stream_id,
            Message.processing_status == PENDING,
            Message.timestamp >= start,
            Message.timestamp < end,
        )
        excluded = list(exclude_ids or [])
        if excluded:
            query = query.filter(Message.id.notin_(excluded))
        return query.order_by(Message.timestamp, Message.id).limit(limit).all()

    def fetch_context(
        self,
        stream_id: str,
        before: datetime,
        hours: int,
        limit: int = 100,
    ) -> list[Message]:
        """
        Fetch messages preceding a window, regardless of status.

        Args:
            stream_id: Stream to read from
            before: Exclusive upper bound (the window start)
            hours: How far back to look
            limit: Maximum number of messages

        Returns:
            Messages in [before - hours, before) ordered by timestamp
        """
        since = before - timedelta(hours=hours)
        return (
            self.session.query(Message)
            .filter(
                Message.stream_id == stream_id,
                Message.timestamp >= since,
                Message.timestamp < before,
            )
            .order_by(Message.timestamp, Message.id)
            .limit(limit)
            .all()
        )

    def mark_completed(self, message_ids: Iterable[int]) -> int:
        """
        Mark messages as COMPLETED.

        Args:
            message_ids: Ids of messages to update

        Returns:
            Number of rows updated
        """
        ids = list(message_ids)
        if not ids:
            return 0
        result = self.session.execute(
            update(Message)
            .where(Message.id.in_(ids))
            .values(processing_status=COMPLETED)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        return result.rowcount or 0
