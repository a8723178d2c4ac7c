"""
Batch classification.

One LLM call partitions a page of messages into threads and judges each
thread's documentation value. The model is told to cover every message; the
safety net enforces it, so a message the model skipped still ends up in a
(``no-doc-value``) thread instead of silently staying unclassified.
"""

import logging
from dataclasses import dataclass, field

from docsyphon.exceptions import ClassificationError, LLMError
from docsyphon.llm.structured import StructuredLLM
from docsyphon.models.db import Message
from docsyphon.models.schemas import (
    NO_DOC_VALUE,
    BatchClassificationResponse,
    ClassifiedThread,
)
from docsyphon.pipeline.prompts import (
    CLASSIFICATION_SYSTEM_PROMPT,
    CLASSIFICATION_USER_PROMPT,
    NO_CONTEXT_MESSAGES,
)
from docsyphon.pipeline.reply_chain import (
    format_batch_messages,
    format_context_messages,
)

logger = logging.getLogger(__name__)

SAFETY_NET_REASON = (
    "LLM classification error: Message was not included in any thread "
    "during batch processing"
)
SAFETY_NET_SUMMARY = "Unclassified message"


@dataclass
class BatchClassification:
    """Threads for one batch page.

    ``threads`` hold only batch message ids, each id in exactly one thread.
    ``synthetic_threads`` were created by the safety net, one per message
    the model left out.
    """

    threads: list[ClassifiedThread] = field(default_factory=list)
    synthetic_threads: list[ClassifiedThread] = field(default_factory=list)
    batch_summary: str = ""
    model_used: str = ""

    @property
    def all_threads(self) -> list[tuple[ClassifiedThread, bool]]:
        """(thread, synthetic) pairs, model threads first."""
        return [(t, False) for t in self.threads] + [
            (t, True) for t in self.synthetic_threads
        ]

    @property
    def message_ids(self) -> set[int]:
        return {mid for thread, _ in self.all_threads for mid in thread.message_ids}


def normalize_threads(
    threads: list[ClassifiedThread], batch_ids: set[int]
) -> list[ClassifiedThread]:
    """
    Restrict threads to batch messages, each message in one thread only.

    Context and unknown ids are dropped; an id claimed by an earlier thread
    is dropped from later ones. Threads left without messages are removed.
    """
    claimed: set[int] = set()
    normalized: list[ClassifiedThread] = []
    for thread in threads:
        ids: list[int] = []
        for message_id in thread.message_ids:
            if message_id not in batch_ids:
                logger.debug(f"Ignoring non-batch message id {message_id} in thread")
                continue
            if message_id in claimed:
                logger.warning(f"Message {message_id} assigned to more than one thread")
                continue
            claimed.add(message_id)
            ids.append(message_id)
        if ids:
            normalized.append(thread.model_copy(update={"message_ids": ids}))
    return normalized


def safety_net_threads(
    threads: list[ClassifiedThread], batch: list[Message]
) -> list[ClassifiedThread]:
    """Synthetic no-doc-value threads for batch messages missing from threads."""
    covered = {mid for thread in threads for mid in thread.message_ids}
    missing = [m for m in batch if m.id not in covered]
    if missing:
        logger.warning(
            f"LLM missed {len(missing)} of {len(batch)} messages, "
            f"creating fallback threads: {[m.id for m in missing]}"
        )
    return [
        ClassifiedThread(
            category=NO_DOC_VALUE,
            message_ids=[message.id],
            summary=SAFETY_NET_SUMMARY,
            doc_value_reason=SAFETY_NET_REASON,
        )
        for message in missing
    ]


class ClassificationEngine:
    """Groups batch messages into threads and judges their documentation value."""

    def __init__(
        self,
        llm: StructuredLLM,
        project_name: str,
        project_domain: str,
        max_tokens: int = 16000,
    ):
        self.llm = llm
        self.project_name = project_name
        self.project_domain = project_domain
        self.max_tokens = max_tokens

    def build_prompts(
        self, batch: list[Message], context: list[Message]
    ) -> tuple[str, str]:
        system_prompt = CLASSIFICATION_SYSTEM_PROMPT.format(
            project_name=self.project_name,
            project_domain=self.project_domain,
        )
        user_prompt = CLASSIFICATION_USER_PROMPT.format(
            project_name=self.project_name,
            context_text=format_context_messages(context) or NO_CONTEXT_MESSAGES,
            messages_to_analyze=format_batch_messages(batch),
        )
        return system_prompt, user_prompt

    def classify(
        self, batch: list[Message], context: list[Message]
    ) -> BatchClassification:
        """
        Classify a page of messages.

        Args:
            batch: PENDING messages to classify, ordered by timestamp
            context: Earlier messages shown to the model for reference only

        Returns:
            BatchClassification covering every batch message

        Raises:
            ClassificationError: If the LLM call failed or returned output
                that never validated
        """
        if not batch:
            return BatchClassification(model_used=self.llm.model_name)

        system_prompt, user_prompt = self.build_prompts(batch, context)
        logger.debug(
            f"Classifying batch: {len(batch)} messages, {len(context)} context"
        )

        try:
            response = self.llm.request_structured(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_model=BatchClassificationResponse,
                max_tokens=self.max_tokens,
                purpose="classification",
            )
        except LLMError as e:
            raise ClassificationError(
                f"Failed to classify batch of {len(batch)} messages: {e}"
            ) from e

        threads = normalize_threads(response.threads, {m.id for m in batch})
        result = BatchClassification(
            threads=threads,
            synthetic_threads=safety_net_threads(threads, batch),
            batch_summary=response.batch_summary,
            model_used=self.llm.model_name,
        )
        valuable = sum(1 for t in threads if t.has_doc_value)
        logger.info(
            f"Classified {len(batch)} messages into {len(threads)} threads "
            f"({valuable} with doc value, {len(result.synthetic_threads)} fallback)"
        )
        return result
