"""Custom exceptions for Docsyphon."""

from typing import Any, Optional


class DocsyphonError(Exception):
    """Base class for all Docsyphon errors."""


class ConfigurationError(DocsyphonError):
    """Raised when required configuration is missing or invalid."""


class LLMError(DocsyphonError):
    """Base class for failures talking to an LLM provider."""


class LLMProviderError(LLMError):
    """Raised when the provider call itself fails.

    Attributes:
        transient: True when the failure is worth retrying (timeouts,
            rate limits, connection resets, 5xx responses).
    """

    def __init__(self, message: str, transient: bool = False):
        self.transient = transient
        super().__init__(message)


class LLMSchemaValidationError(LLMError):
    """Raised when an LLM response does not match the expected schema."""

    def __init__(
        self,
        purpose: str,
        errors: Any,
        raw_content: str = "",
    ):
        self.purpose = purpose
        self.errors = errors
        self.raw_content = raw_content
        super().__init__(f"Invalid {purpose} response from LLM: {errors}")


class ClassificationError(DocsyphonError):
    """Raised when a batch could not be classified into threads."""


class ProposalGenerationError(DocsyphonError):
    """Raised when proposals could not be generated for a conversation."""

    def __init__(self, conversation_id: str, reason: str):
        self.conversation_id = conversation_id
        super().__init__(f"Proposal generation failed for {conversation_id}: {reason}")


class RetrievalError(DocsyphonError):
    """Raised when the vector search capability fails."""


class JobLockError(DocsyphonError):
    """Raised when the batch job lock is not held by the caller (release or renewal)."""

    def __init__(self, name: str, holder: Optional[str] = None):
        self.name = name
        self.holder = holder
        message = f"Job lock {name!r} is not held"
        if holder:
            message += f" by {holder}"
        super().__init__(message)

