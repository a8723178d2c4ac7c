"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Message store, per-stream watermarks, classification and retrieval
context records, proposals with review logs, tenant rulesets, the job
lock table and the document index.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("stream_id", sa.String(255), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("author", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("channel", sa.String(255), nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        sa.Column(
            "processing_status",
            sa.String(20),
            nullable=False,
            server_default="PENDING",
        ),
        _created_at(),
    )
    op.create_index("ix_messages_stream_id", "messages", ["stream_id"])
    op.create_index("ix_messages_timestamp", "messages", ["timestamp"])
    op.create_index(
        "ix_messages_stream_status_timestamp",
        "messages",
        ["stream_id", "processing_status", "timestamp"],
    )

    op.create_table(
        "processing_watermarks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("stream_id", sa.String(255), nullable=False, unique=True),
        sa.Column("watermark_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_processed_batch", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    op.create_table(
        "message_classifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("message_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("batch_id", sa.String(100), nullable=False),
        sa.Column("conversation_id", sa.String(255), nullable=True),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("doc_value_reason", sa.Text(), nullable=False),
        sa.Column("rag_search_criteria", JSON_TYPE, nullable=True),
        sa.Column("model_used", sa.String(100), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_message_classifications_message_id", "message_classifications", ["message_id"]
    )
    op.create_index(
        "ix_message_classifications_batch_id", "message_classifications", ["batch_id"]
    )
    op.create_index(
        "ix_message_classifications_conversation_id",
        "message_classifications",
        ["conversation_id"],
    )

    op.create_table(
        "conversation_rag_contexts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("conversation_id", sa.String(255), nullable=False, unique=True),
        sa.Column("batch_id", sa.String(100), nullable=False),
        sa.Column("summary", sa.String(200), nullable=True),
        sa.Column("retrieved_docs", JSON_TYPE, nullable=False),
        sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("proposals_rejected", sa.Boolean(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_conversation_rag_contexts_conversation_id",
        "conversation_rag_contexts",
        ["conversation_id"],
    )
    op.create_index(
        "ix_conversation_rag_contexts_batch_id", "conversation_rag_contexts", ["batch_id"]
    )

    op.create_table(
        "doc_proposals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("conversation_id", sa.String(255), nullable=False),
        sa.Column("batch_id", sa.String(100), nullable=False),
        sa.Column("update_type", sa.String(20), nullable=False),
        sa.Column("page", sa.String(255), nullable=False),
        sa.Column("section", sa.String(255), nullable=True),
        sa.Column("location", JSON_TYPE, nullable=True),
        sa.Column("suggested_text", sa.Text(), nullable=True),
        sa.Column("raw_suggested_text", sa.Text(), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("source_messages", JSON_TYPE, nullable=False),
        sa.Column("warnings", JSON_TYPE, nullable=False),
        sa.Column("enrichment", JSON_TYPE, nullable=True),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _created_at(),
    )
    op.create_index("ix_doc_proposals_conversation_id", "doc_proposals", ["conversation_id"])
    op.create_index("ix_doc_proposals_batch_id", "doc_proposals", ["batch_id"])
    op.create_index("ix_doc_proposals_status", "doc_proposals", ["status"])

    op.create_table(
        "proposal_review_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("proposal_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("conversation_id", sa.String(255), nullable=False),
        sa.Column("batch_id", sa.String(100), nullable=False),
        sa.Column("page", sa.String(255), nullable=True),
        sa.Column("ruleset_version", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_content", sa.Text(), nullable=True),
        sa.Column("modifications_applied", JSON_TYPE, nullable=False),
        sa.Column("rejected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rejection_rule", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("quality_flags", JSON_TYPE, nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_proposal_review_logs_proposal_id", "proposal_review_logs", ["proposal_id"]
    )
    op.create_index(
        "ix_proposal_review_logs_conversation_id",
        "proposal_review_logs",
        ["conversation_id"],
    )

    op.create_table(
        "tenant_rulesets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(255), nullable=False, unique=True),
        sa.Column("content", sa.Text(), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    op.create_table(
        "pipeline_locks",
        sa.Column("name", sa.String(100), primary_key=True),
        sa.Column("holder", sa.String(255), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "document_pages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("file_path", sa.String(500), nullable=False, unique=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", JSON_TYPE, nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("document_pages")
    op.drop_table("pipeline_locks")
    op.drop_table("tenant_rulesets")
    op.drop_table("proposal_review_logs")
    op.drop_table("doc_proposals")
    op.drop_table("conversation_rag_contexts")
    op.drop_table("message_classifications")
    op.drop_table("processing_watermarks")
    op.drop_table("messages")
