"""
Repository layer for database operations.

Provides a clean API for reading messages and writing pipeline records.
"""

from docsyphon.db.repositories.base import BaseRepository
from docsyphon.db.repositories.classification import ClassificationRepository
from docsyphon.db.repositories.job_lock import JobLockRepository
from docsyphon.db.repositories.message import MessageRepository
from docsyphon.db.repositories.proposal import ProposalRepository, ReviewLogRepository
from docsyphon.db.repositories.rag_context import RagContextRepository
from docsyphon.db.repositories.ruleset import RulesetRepository
from docsyphon.db.repositories.watermark import WatermarkRepository

__all__ = [
    "BaseRepository",
    "ClassificationRepository",
    "JobLockRepository",
    "MessageRepository",
    "ProposalRepository",
    "RagContextRepository",
    "ReviewLogRepository",
    "RulesetRepository",
    "WatermarkRepository",
]
