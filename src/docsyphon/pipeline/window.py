"""
Batch window planning.

A window starts at the oldest PENDING message at or after the stream's
watermark and spans ``batch_window_hours``, clipped to now so a still-open
window can be processed without waiting for it to age. Within a window,
messages are paged by ``max_batch_size``.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from docsyphon.db.repositories.message import MessageRepository
from docsyphon.db.repositories.watermark import WatermarkRepository
from docsyphon.models.db import Message
from docsyphon.models.pipeline import BatchWindow
from docsyphon.utils.time import as_utc, to_epoch_ms

logger = logging.getLogger(__name__)


def make_batch_id(stream_id: str, start: datetime) -> str:
    """Batch ids are '<first 10 chars of stream>_<window start epoch ms>'."""
    return f"{stream_id[:10]}_{to_epoch_ms(start)}"


class BatchWindowPlanner:
    """Computes processing windows and pages for a stream."""

    def __init__(
        self,
        messages: MessageRepository,
        watermarks: WatermarkRepository,
        window_hours: int = 24,
        context_hours: int = 24,
        context_limit: int = 100,
    ):
        self.messages = messages
        self.watermarks = watermarks
        self.window_hours = window_hours
        self.context_hours = context_hours
        self.context_limit = context_limit

    def next_window(
        self, stream_id: str, watermark: datetime, now: datetime
    ) -> Optional[BatchWindow]:
        """
        Plan the next window for a stream.

        Args:
            stream_id: Stream to plan for
            watermark: Current watermark of the stream
            now: Current time

        Returns:
            BatchWindow, or None when the stream is drained or its oldest
            pending message is not in the past yet
        """
        while True:
            first = self.messages.earliest_pending_at_or_after(stream_id, watermark)
            if first is None:
                logger.debug(f"Stream {stream_id} has no pending messages after {watermark}")
                return None

            start = as_utc(first.timestamp)
            end = min(start + timedelta(hours=self.window_hours), now)
            if end <= start:
                logger.info(
                    f"Oldest pending message in {stream_id} is at {start.isoformat()}, "
                    f"not before now; waiting for the next run"
                )
                return None

            if self.messages.count_pending_in_range(stream_id, start, end) == 0:
                logger.info(
                    f"Window {start.isoformat()}..{end.isoformat()} of {stream_id} "
                    f"is empty, advancing watermark"
                )
                watermark = self.watermarks.advance(stream_id, end, now)
                continue

            return BatchWindow(
                stream_id=stream_id,
                start=start,
                end=end,
                batch_id=make_batch_id(stream_id, start),
            )

    def next_page(
        self,
        window: BatchWindow,
        page_size: int,
        attempted_ids: Iterable[int] = (),
    ) -> list[Message]:
        """Next page of PENDING messages in the window not yet attempted this run."""
        return self.messages.fetch_pending_page(
            window.stream_id,
            window.start,
            window.end,
            limit=page_size,
            exclude_ids=attempted_ids,
        )

    def context_for(self, window: BatchWindow) -> list[Message]:
        """Messages from the hours before the window, for classifier context."""
        return self.messages.fetch_context(
            window.stream_id,
            window.start,
            hours=self.context_hours,
            limit=self.context_limit,
        )


def plan_window(
    messages: MessageRepository,
    watermarks: WatermarkRepository,
    stream_id: str,
    watermark: datetime,
    now: datetime,
    batch_window_hours: int = 24,
) -> Optional[BatchWindow]:
    """Plan the next window of a stream without constructing a planner."""
    planner = BatchWindowPlanner(messages, watermarks, window_hours=batch_window_hours)
    return planner.next_window(stream_id, watermark, now)
