"""
SQLAlchemy database models for Docsyphon.

These models represent the message store the pipeline reads from and the
classification, retrieval-context, proposal and review records it writes.
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class ProcessingStatus(str, enum.Enum):
    """Processing state of an ingested message."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class ProposalStatus(str, enum.Enum):
    """Review status of a persisted proposal."""

    PENDING = "pending"
    APPROVED = "approved"
    IGNORED = "ignored"


class Message(Base):
    """A single chat message imported from a stream.

    Owned by the importer. The pipeline only flips ``processing_status``.
    """

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    external_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # Source-side id, "<chatId>-<messageId>" for chat imports
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    channel: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSONType, nullable=True
    )
    processing_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ProcessingStatus.PENDING.value,
        server_default=ProcessingStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index(
            "ix_messages_stream_status_timestamp",
            "stream_id",
            "processing_status",
            "timestamp",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, stream_id={self.stream_id!r}, "
            f"status={self.processing_status!r})>"
        )


class ProcessingWatermark(Base):
    """Per-stream boundary up to which messages have been durably processed."""

    __tablename__ = "processing_watermarks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    watermark_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    last_processed_batch: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessingWatermark(stream_id={self.stream_id!r}, "
            f"watermark_time={self.watermark_time})>"
        )


class MessageClassification(Base):
    """Thread assignment and documentation-value verdict for one message."""

    __tablename__ = "message_classifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    message_id: Mapped[int] = mapped_column(
        Integer, nullable=False, unique=True, index=True
    )
    batch_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    conversation_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    doc_value_reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    rag_search_criteria: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType, nullable=True
    )  # {keywords: [...], semantic_query: "..."}
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<MessageClassification(message_id={self.message_id}, "
            f"category={self.category!r})>"
        )


class ConversationRagContext(Base):
    """Retrieved documentation context (or discard verdict) for a conversation."""

    __tablename__ = "conversation_rag_contexts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    batch_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    summary: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    retrieved_docs: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )  # Metadata plus content preview, never full content
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    proposals_rejected: Mapped[Optional[bool]] = mapped_column(
        Boolean, nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<ConversationRagContext(conversation_id={self.conversation_id!r}, "
            f"proposals_rejected={self.proposals_rejected})>"
        )


class DocProposal(Base):
    """A suggested change to a documentation page."""

    __tablename__ = "doc_proposals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True
    )
    batch_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    update_type: Mapped[str] = mapped_column(String(20), nullable=False)
    page: Mapped[str] = mapped_column(String(255), nullable=False)
    section: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType, nullable=True
    )  # {line_start, line_end, section_name}
    suggested_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_suggested_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source_messages: Mapped[list[int]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    warnings: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    enrichment: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType, nullable=True
    )
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ProposalStatus.PENDING.value,
        server_default=ProposalStatus.PENDING.value,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<DocProposal(id={self.id}, page={self.page!r}, "
            f"update_type={self.update_type!r})>"
        )


class ProposalReviewLog(Base):
    """Audit record of a ruleset evaluation for one proposal.

    ``proposal_id`` is empty for rejected proposals, which are never
    persisted as DocProposal rows.
    """

    __tablename__ = "proposal_review_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    proposal_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    conversation_id: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True
    )
    batch_id: Mapped[str] = mapped_column(String(100), nullable=False)
    page: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ruleset_version: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    original_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    modifications_applied: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    rejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_rule: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quality_flags: Mapped[list[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<ProposalReviewLog(conversation_id={self.conversation_id!r}, "
            f"rejected={self.rejected})>"
        )


class TenantRuleset(Base):
    """Markdown ruleset used to reject or flag proposals for a tenant."""

    __tablename__ = "tenant_rulesets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<TenantRuleset(tenant_id={self.tenant_id!r})>"


class PipelineLock(Base):
    """Lease row that serializes batch processing runs across processes."""

    __tablename__ = "pipeline_locks"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    holder: Mapped[str] = mapped_column(String(255), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return f"<PipelineLock(name={self.name!r}, holder={self.holder!r})>"


class DocumentPage(Base):
    """Indexed documentation page with its embedding."""

    __tablename__ = "document_pages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[Optional[list[float]]] = mapped_column(
        JSONType, nullable=True
    )
    content_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<DocumentPage(file_path={self.file_path!r})>"
