"""
Pydantic schemas for structured LLM responses.

Each LLM call site has an explicit response model. The JSON schema of the
model is sent to the provider, and the reply is validated against it before
anything downstream sees it.
"""

from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

NO_DOC_VALUE = "no-doc-value"

Keyword = Annotated[str, Field(max_length=50)]


class RagSearchCriteria(BaseModel):
    """Search hints the classifier attaches to a valuable thread."""

    model_config = ConfigDict(extra="ignore")

    keywords: list[Keyword] = Field(default_factory=list)
    semantic_query: str = Field(default="", max_length=200)


class ClassifiedThread(BaseModel):
    """One thread of related batch messages."""

    model_config = ConfigDict(extra="ignore")

    category: str = Field(max_length=50)
    message_ids: list[int] = Field(min_length=1)
    summary: str = Field(max_length=200)
    doc_value_reason: str = Field(max_length=300)
    rag_search_criteria: Optional[RagSearchCriteria] = None

    @property
    def has_doc_value(self) -> bool:
        return self.category != NO_DOC_VALUE


class BatchClassificationResponse(BaseModel):
    """Thread partition of a message batch."""

    model_config = ConfigDict(extra="ignore")

    threads: list[ClassifiedThread]
    batch_summary: str = Field(default="", max_length=500)


class ProposalLocation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    line_start: Optional[int] = None
    line_end: Optional[int] = None
    section_name: Optional[str] = Field(default=None, max_length=100)


class ProposalDraft(BaseModel):
    """A documentation change suggested by the model."""

    model_config = ConfigDict(extra="ignore")

    update_type: Literal["INSERT", "UPDATE", "DELETE", "NONE"]
    page: str = Field(max_length=150)
    section: Optional[str] = Field(default=None, max_length=100)
    location: Optional[ProposalLocation] = None
    suggested_text: Optional[str] = Field(default=None, max_length=2000)
    reasoning: str = Field(max_length=300)
    source_messages: Optional[list[int]] = None
    warnings: Optional[list[str]] = None


MAX_PROPOSALS_PER_RESPONSE = 10


class ProposalResponse(BaseModel):
    """Proposals for one conversation, or the model's reason for declining."""

    model_config = ConfigDict(extra="ignore")

    proposals: list[ProposalDraft] = Field(
        default_factory=list, max_length=MAX_PROPOSALS_PER_RESPONSE
    )
    proposals_rejected: Optional[bool] = None
    rejection_reason: Optional[str] = None


class ReformattedContent(BaseModel):
    """Corrected proposal text returned by the reformat call."""

    model_config = ConfigDict(extra="ignore")

    reformatted_content: str


class CondensedContent(BaseModel):
    """Shortened proposal text returned by the condense call."""

    model_config = ConfigDict(extra="ignore")

    condensed_content: str
