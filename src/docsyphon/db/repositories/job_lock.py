"""
Job lock repository.

A lease row per lock name keeps batch runs mutually exclusive across
processes. Expired leases can be taken over so a crashed run does not block
processing forever.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from docsyphon.exceptions import JobLockError
from docsyphon.models.db import PipelineLock
from docsyphon.utils.time import as_utc, utc_now

logger = logging.getLogger(__name__)


class JobLockRepository:
    """Lease-based mutual exclusion backed by the pipeline_locks table.

    ``acquire``, ``renew`` and ``release`` commit, so other processes see
    the lease immediately. Long runs call ``renew`` as they go so the lease
    never lapses while work is in flight.
    """

    def __init__(self, session: Session):
        self.session = session

    def acquire(
        self,
        name: str,
        holder: str,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> bool:
        """
        Try to take the lock.

        Args:
            name: Lock name
            holder: Identifier of the caller (host/pid/run id)
            ttl: Lease duration
            now: Current time (defaults to utc_now())

        Returns:
            True if the lock is now held by holder, False if someone else holds it
        """
        now = now or utc_now()
        lock = (
            self.session.query(PipelineLock)
            .filter(PipelineLock.name == name)
            .with_for_update()
            .first()
        )

        if lock is not None:
            if as_utc(lock.expires_at) > now and lock.holder != holder:
                logger.info(
                    f"Lock {name!r} held by {lock.holder} until "
                    f"{as_utc(lock.expires_at).isoformat()}"
                )
                self.session.commit()  # Ends the row lock
                return False
            if lock.holder != holder:
                logger.warning(f"Taking over expired lock {name!r} from {lock.holder}")
            lock.holder = holder
            lock.acquired_at = now
            lock.expires_at = now + ttl
            self.session.commit()
            return True

        savepoint = self.session.begin_nested()
        try:
            self.session.add(
                PipelineLock(
                    name=name, holder=holder, acquired_at=now, expires_at=now + ttl
                )
            )
            savepoint.commit()
        except IntegrityError:
            # Another process inserted the row between our read and write
            savepoint.rollback()
            logger.info(f"Lost race for lock {name!r}")
            return False
        self.session.commit()
        return True

    def renew(
        self,
        name: str,
        holder: str,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> bool:
        """
        Extend holder's lease to now + ttl.

        Returns:
            False when the lock was released or taken over by someone else
        """
        now = now or utc_now()
        lock = (
            self.session.query(PipelineLock)
            .filter(PipelineLock.name == name)
            .with_for_update()
            .first()
        )
        if lock is None or lock.holder != holder:
            self.session.commit()
            logger.error(
                f"Lock {name!r} lost by {holder}, now held by "
                f"{lock.holder if lock else 'nobody'}"
            )
            return False
        lock.expires_at = now + ttl
        self.session.commit()
        return True

    def release(self, name: str, holder: str) -> None:
        """
        Release a lock held by holder.

        Raises:
            JobLockError: If the lock is not held by holder
        """
        lock = self.session.get(PipelineLock, name)
        if lock is None or lock.holder != holder:
            raise JobLockError(name, holder)
        self.session.delete(lock)
        self.session.commit()

    def is_locked(self, name: str, now: datetime | None = None) -> bool:
        now = now or utc_now()
        lock = self.session.get(PipelineLock, name)
        return lock is not None and as_utc(lock.expires_at) > now
