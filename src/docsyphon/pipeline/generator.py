"""
Proposal generation for valuable conversations.

The model sees the full conversation and the complete content of every
retrieved page, and returns schema-validated proposals or an explicit
decision not to propose anything.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from docsyphon.exceptions import LLMError, ProposalGenerationError
from docsyphon.llm.structured import StructuredLLM
from docsyphon.models.pipeline import ConversationGroup, SearchHit
from docsyphon.models.schemas import (
    MAX_PROPOSALS_PER_RESPONSE,
    ProposalDraft,
    ProposalResponse,
)
from docsyphon.pipeline.prompts import (
    DOC_SEPARATOR,
    NO_DOCS_FOUND,
    PROPOSAL_SYSTEM_PROMPT,
    PROPOSAL_USER_PROMPT,
    QUALITY_GUIDELINES_SECTION,
)
from docsyphon.quality.ruleset import ParsedRuleset
from docsyphon.utils.time import as_utc

logger = logging.getLogger(__name__)


@dataclass
class ProposalBatch:
    """Proposals generated for one conversation."""

    proposals: list[ProposalDraft] = field(default_factory=list)
    proposals_rejected: Optional[bool] = None
    rejection_reason: Optional[str] = None
    model_used: str = ""


def format_docs(docs: list[SearchHit]) -> str:
    blocks = [
        f"[DOC {index}] {doc.title}\n"
        f"File Path: {doc.file_path}\n"
        f"Similarity: {doc.similarity:.3f}\n"
        f"Length: {len(doc.content)} chars\n"
        f"\n"
        f"COMPLETE FILE CONTENT:\n"
        f"{doc.content}"
        for index, doc in enumerate(docs, start=1)
    ]
    return DOC_SEPARATOR.join(blocks)


def format_conversation(conversation: ConversationGroup) -> str:
    blocks = [
        f"[MESSAGE {index}] (ID: {message.message_id})\n"
        f"Author: {message.author}\n"
        f"Time: {as_utc(message.timestamp).isoformat()}\n"
        f"Category: {message.category}\n"
        f"Reason: {message.doc_value_reason}\n"
        f"Content: {message.content}"
        for index, message in enumerate(conversation.messages, start=1)
    ]
    return "\n\n".join(blocks)


class ProposalGenerator:
    """Asks the proposal model for documentation changes."""

    def __init__(
        self,
        llm: StructuredLLM,
        project_name: str,
        project_domain: str,
        max_tokens: int = 16000,
        max_proposals: int = MAX_PROPOSALS_PER_RESPONSE,
    ):
        self.llm = llm
        self.project_name = project_name
        self.project_domain = project_domain
        self.max_tokens = max_tokens
        self.max_proposals = min(max_proposals, MAX_PROPOSALS_PER_RESPONSE)

    def build_system_prompt(self, ruleset: Optional[ParsedRuleset] = None) -> str:
        """Base system prompt plus the tenant's PROMPT_CONTEXT rules, if any."""
        prompt = PROPOSAL_SYSTEM_PROMPT.format(
            project_name=self.project_name,
            project_domain=self.project_domain,
        )
        if ruleset and ruleset.prompt_context:
            rules = "\n".join(f"- {rule}" for rule in ruleset.prompt_context)
            prompt += QUALITY_GUIDELINES_SECTION.format(rules=rules)
            logger.debug(f"Injected {len(ruleset.prompt_context)} prompt context rules")
        return prompt

    def build_user_prompt(
        self, conversation: ConversationGroup, docs: list[SearchHit]
    ) -> str:
        return PROPOSAL_USER_PROMPT.format(
            project_name=self.project_name,
            message_count=conversation.message_count,
            channel=conversation.channel or "general",
            conversation_context=format_conversation(conversation),
            rag_context=format_docs(docs) or NO_DOCS_FOUND,
            max_proposals=self.max_proposals,
        )

    def generate(
        self,
        conversation: ConversationGroup,
        docs: list[SearchHit],
        ruleset: Optional[ParsedRuleset] = None,
    ) -> ProposalBatch:
        """
        Generate proposals for one conversation.

        Args:
            conversation: A conversation with documentation value
            docs: Deduplicated docs retrieved for it
            ruleset: Tenant ruleset whose prompt context is injected

        Returns:
            ProposalBatch with at most max_proposals proposals

        Raises:
            ProposalGenerationError: If the LLM call failed or its output
                never validated
        """
        try:
            response = self.llm.request_structured(
                system_prompt=self.build_system_prompt(ruleset),
                user_prompt=self.build_user_prompt(conversation, docs),
                response_model=ProposalResponse,
                max_tokens=self.max_tokens,
                purpose="proposal",
            )
        except LLMError as e:
            raise ProposalGenerationError(conversation.id, str(e)) from e

        proposals = response.proposals
        if len(proposals) > self.max_proposals:
            logger.warning(
                f"Conversation {conversation.id}: keeping {self.max_proposals} "
                f"of {len(proposals)} proposals"
            )
            proposals = proposals[: self.max_proposals]

        logger.info(f"Conversation {conversation.id}: LLM proposed {len(proposals)} changes")
        return ProposalBatch(
            proposals=proposals,
            proposals_rejected=response.proposals_rejected,
            rejection_reason=response.rejection_reason,
            model_used=self.llm.model_name,
        )
