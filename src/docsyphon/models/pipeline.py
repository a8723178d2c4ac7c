"""
In-memory data models for the batch pipeline.

These dataclasses carry messages, conversations, retrieved documents and
proposal outcomes between pipeline stages. They are built fresh per batch
and never persisted directly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from docsyphon.models.schemas import NO_DOC_VALUE, ProposalDraft, RagSearchCriteria


@dataclass
class MessageMetadata:
    """Optional per-message metadata recognised by the pipeline.

    Unknown keys in the stored JSON are ignored. Missing reply fields are
    valid and just disable reply-chain linking for the message.
    """

    reply_to_message_id: Optional[str] = None
    chat_id: Optional[str] = None
    topic: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "MessageMetadata":
        """Read stored metadata; anything but a JSON object counts as absent."""
        if not isinstance(data, dict) or not data:
            return cls()

        def _text(*keys: str) -> Optional[str]:
            for key in keys:
                value = data.get(key)
                if value is not None and value != "":
                    return str(value)
            return None

        return cls(
            reply_to_message_id=_text("reply_to_message_id", "replyToMessageId"),
            chat_id=_text("chat_id", "chatId"),
            topic=_text("topic", "topicTitle"),
        )

    @property
    def reply_target(self) -> Optional[str]:
        """External id of the replied-to message, when linkable."""
        if self.chat_id and self.reply_to_message_id:
            return f"{self.chat_id}-{self.reply_to_message_id}"
        return None


@dataclass
class BatchWindow:
    """A contiguous time range of one stream selected for processing."""

    stream_id: str
    start: datetime
    end: datetime
    batch_id: str


@dataclass
class ConversationMessage:
    """A batch message bound to the thread it was classified into."""

    message_id: int
    timestamp: datetime
    author: str
    content: str
    channel: Optional[str] = None
    category: str = NO_DOC_VALUE
    doc_value_reason: str = ""
    rag_search_criteria: Optional[RagSearchCriteria] = None


@dataclass
class ConversationGroup:
    """Messages the classifier grouped into one conversation."""

    id: str
    channel: Optional[str]
    summary: str
    category: str
    doc_value_reason: str
    messages: list[ConversationMessage] = field(default_factory=list)
    time_start: Optional[datetime] = None
    time_end: Optional[datetime] = None
    synthetic: bool = False  # Created by the classification safety net

    @property
    def message_ids(self) -> list[int]:
        return [m.message_id for m in self.messages]

    @property
    def has_doc_value(self) -> bool:
        return self.category != NO_DOC_VALUE

    @property
    def message_count(self) -> int:
        return len(self.messages)


@dataclass
class SearchHit:
    """A single result from the vector search capability."""

    id: str
    file_path: str
    title: str
    content: str
    similarity: float


@dataclass
class RelatedDoc:
    page: str
    similarity: float
    match_type: str  # 'semantic', 'keyword', 'same-section'
    snippet: str

    def to_dict(self) -> dict:
        return {
            "page": self.page,
            "similarity": self.similarity,
            "match_type": self.match_type,
            "snippet": self.snippet,
        }


@dataclass
class DuplicationWarning:
    """Best n-gram overlap of a proposal against the retrieved docs.

    ``matching_*`` are set only when the overlap reaches the detection
    threshold. ``best_match_*`` name the doc behind ``overlap_percentage``
    whenever any overlap was found.
    """

    detected: bool
    overlap_percentage: int
    matching_page: Optional[str] = None
    matching_section: Optional[str] = None
    best_match_page: Optional[str] = None
    best_match_section: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "overlap_percentage": self.overlap_percentage,
            "matching_page": self.matching_page,
            "matching_section": self.matching_section,
            "best_match_page": self.best_match_page,
            "best_match_section": self.best_match_section,
        }


@dataclass
class StyleMetrics:
    avg_sentence_length: float = 0.0
    uses_code_examples: bool = False
    format_pattern: str = "prose"  # 'prose', 'list', 'mixed'
    technical_depth: str = "basic"  # 'basic', 'intermediate', 'advanced'

    def to_dict(self) -> dict:
        return {
            "avg_sentence_length": self.avg_sentence_length,
            "uses_code_examples": self.uses_code_examples,
            "format_pattern": self.format_pattern,
            "technical_depth": self.technical_depth,
        }


@dataclass
class StyleAnalysis:
    proposal_metrics: StyleMetrics = field(default_factory=StyleMetrics)
    target_page_metrics: Optional[StyleMetrics] = None
    consistency_notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "proposal_metrics": self.proposal_metrics.to_dict(),
            "target_page_metrics": (
                self.target_page_metrics.to_dict() if self.target_page_metrics else None
            ),
            "consistency_notes": list(self.consistency_notes),
        }


@dataclass
class ChangeContext:
    target_section_char_count: int = 0
    proposal_char_count: int = 0
    change_percentage: int = 0
    last_updated: Optional[datetime] = None
    other_pending_proposals: int = 0

    def to_dict(self) -> dict:
        return {
            "target_section_char_count": self.target_section_char_count,
            "proposal_char_count": self.proposal_char_count,
            "change_percentage": self.change_percentage,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "other_pending_proposals": self.other_pending_proposals,
        }


@dataclass
class SourceAnalysis:
    message_count: int = 0
    unique_authors: int = 0
    thread_had_consensus: bool = False
    conversation_summary: str = ""

    def to_dict(self) -> dict:
        return {
            "message_count": self.message_count,
            "unique_authors": self.unique_authors,
            "thread_had_consensus": self.thread_had_consensus,
            "conversation_summary": self.conversation_summary,
        }


@dataclass
class ProposalEnrichment:
    """Signals computed for a proposal before ruleset review."""

    related_docs: list[RelatedDoc] = field(default_factory=list)
    duplication_warning: Optional[DuplicationWarning] = None
    style_analysis: StyleAnalysis = field(default_factory=StyleAnalysis)
    change_context: ChangeContext = field(default_factory=ChangeContext)
    source_analysis: SourceAnalysis = field(default_factory=SourceAnalysis)

    def to_dict(self) -> dict:
        return {
            "related_docs": [doc.to_dict() for doc in self.related_docs],
            "duplication_warning": (
                self.duplication_warning.to_dict() if self.duplication_warning else None
            ),
            "style_analysis": self.style_analysis.to_dict(),
            "change_context": self.change_context.to_dict(),
            "source_analysis": self.source_analysis.to_dict(),
        }


@dataclass
class ReviewResult:
    """Outcome of evaluating a ruleset against one proposal."""

    rejected: bool = False
    rejection_reason: Optional[str] = None
    rejection_rule: Optional[str] = None
    modifications_applied: list[str] = field(default_factory=list)
    quality_flags: list[str] = field(default_factory=list)
    original_content: Optional[str] = None


@dataclass
class ReviewedProposal:
    """A generated proposal with its post-processing, enrichment and review."""

    draft: ProposalDraft
    suggested_text: Optional[str]
    warnings: list[str] = field(default_factory=list)
    enrichment: Optional[ProposalEnrichment] = None
    review: Optional[ReviewResult] = None

    @property
    def rejected(self) -> bool:
        return bool(self.review and self.review.rejected)


@dataclass
class ConversationOutcome:
    """Everything persistence needs for one valuable conversation."""

    conversation: ConversationGroup
    docs: list[SearchHit] = field(default_factory=list)
    proposals: list[ReviewedProposal] = field(default_factory=list)
    proposals_rejected: Optional[bool] = None
    rejection_reason: Optional[str] = None
    model_used: Optional[str] = None
