"""
Processing watermark repository.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from docsyphon.db.repositories.base import BaseRepository
from docsyphon.db.repositories.message import MessageRepository
from docsyphon.models.db import ProcessingWatermark
from docsyphon.utils.time import as_utc

logger = logging.getLogger(__name__)

# Lookback used when a stream has no messages yet
DEFAULT_LOOKBACK = timedelta(days=7)


class WatermarkRepository(BaseRepository[ProcessingWatermark]):
    """Repository for per-stream processing watermarks.

    Watermarks only move forward through ``advance``. ``reset`` is the
    operator escape hatch and may move them backwards.
    """

    def __init__(self, session: Session):
        super().__init__(ProcessingWatermark, session)

    def get_by_stream(self, stream_id: str) -> Optional[ProcessingWatermark]:
        return (
            self.session.query(ProcessingWatermark)
            .filter(ProcessingWatermark.stream_id == stream_id)
            .first()
        )

    def get_or_init(self, stream_id: str, now: datetime) -> datetime:
        """
        Get the watermark for a stream, creating it on first use.

        A new watermark starts at the stream's oldest message, or a week
        before ``now`` when the stream is empty.

        Args:
            stream_id: Stream identifier
            now: Current time

        Returns:
            The watermark time (aware UTC)
        """
        watermark = self.get_by_stream(stream_id)
        if watermark is not None:
            return as_utc(watermark.watermark_time)

        earliest = MessageRepository(self.session).earliest_timestamp(stream_id)
        initial = as_utc(earliest) if earliest else now - DEFAULT_LOOKBACK
        self.create(stream_id=stream_id, watermark_time=initial)
        logger.info(f"Initialized watermark for stream {stream_id} at {initial.isoformat()}")
        return initial

    def advance(
        self, stream_id: str, new_time: datetime, now: datetime
    ) -> datetime:
        """
        Move the watermark forward to new_time.

        Never moves backwards: an older new_time leaves watermark_time as is
        and only records the batch time.

        Returns:
            The resulting watermark time
        """
        watermark = self.get_by_stream(stream_id)
        if watermark is None:
            self.create(
                stream_id=stream_id,
                watermark_time=new_time,
                last_processed_batch=now,
            )
            return new_time

        current = as_utc(watermark.watermark_time)
        if new_time > current:
            watermark.watermark_time = new_time
            current = new_time
        else:
            logger.debug(
                f"Watermark for {stream_id} already at {current.isoformat()}, "
                f"not moving back to {new_time.isoformat()}"
            )
        watermark.last_processed_batch = now
        self.session.flush()
        return current

    def reset(self, stream_id: str, new_time: datetime) -> ProcessingWatermark:
        """Set the watermark unconditionally, creating it if needed."""
        watermark = self.get_by_stream(stream_id)
        if watermark is None:
            return self.create(stream_id=stream_id, watermark_time=new_time)
        watermark.watermark_time = new_time
        self.session.flush()
        logger.warning(f"Watermark for {stream_id} reset to {new_time.isoformat()}")
        return watermark
