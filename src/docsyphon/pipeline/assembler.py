"""
Conversation assembly.

Turns classifier threads into ConversationGroups of full message rows.
Conversation ids derive from channel, first message time and first message
row id, so rerunning the same window yields the same ids and two
conversations never share one, even when they start in the same second.
"""

import logging
from typing import Iterable, Optional

from docsyphon.models.db import Message
from docsyphon.models.pipeline import ConversationGroup, ConversationMessage
from docsyphon.models.schemas import ClassifiedThread
from docsyphon.utils.time import as_utc, to_epoch_ms

logger = logging.getLogger(__name__)


def conversation_id(channel: Optional[str], first_timestamp, first_message_id: int) -> str:
    return f"thread_{channel or 'general'}_{to_epoch_ms(first_timestamp)}_{first_message_id}"


def build_conversation(
    thread: ClassifiedThread,
    messages_by_id: dict[int, Message],
    synthetic: bool = False,
) -> Optional[ConversationGroup]:
    """Build one conversation, or None when none of its ids resolve."""
    rows: list[Message] = []
    for message_id in thread.message_ids:
        message = messages_by_id.get(message_id)
        if message is None:
            logger.warning(f"Thread references unknown message {message_id}, skipping it")
            continue
        rows.append(message)
    if not rows:
        return None

    rows.sort(key=lambda m: (as_utc(m.timestamp), m.id))
    members = [
        ConversationMessage(
            message_id=m.id,
            timestamp=as_utc(m.timestamp),
            author=m.author,
            content=m.content,
            channel=m.channel,
            category=thread.category,
            doc_value_reason=thread.doc_value_reason,
            rag_search_criteria=thread.rag_search_criteria,
        )
        for m in rows
    ]
    first = members[0]
    return ConversationGroup(
        id=conversation_id(first.channel, first.timestamp, first.message_id),
        channel=first.channel,
        summary=thread.summary,
        category=thread.category,
        doc_value_reason=thread.doc_value_reason,
        messages=members,
        time_start=first.timestamp,
        time_end=members[-1].timestamp,
        synthetic=synthetic,
    )


def assemble_conversations(
    threads: Iterable[ClassifiedThread | tuple[ClassifiedThread, bool]],
    batch_messages: list[Message],
) -> list[ConversationGroup]:
    """
    Assemble threads into conversations.

    Args:
        threads: Classified threads, or (thread, synthetic) pairs
        batch_messages: Message rows the thread ids refer to

    Returns:
        Conversations in thread order; empty threads are skipped. Threads
        that start with the same message get '_2', '_3'... suffixes in
        order of appearance.
    """
    messages_by_id = {m.id: m for m in batch_messages}
    conversations: list[ConversationGroup] = []
    used_ids: dict[str, int] = {}

    for item in threads:
        thread, synthetic = item if isinstance(item, tuple) else (item, False)
        conversation = build_conversation(thread, messages_by_id, synthetic)
        if conversation is None:
            logger.warning(f"Skipping empty thread: {thread.summary!r}")
            continue

        seen = used_ids.get(conversation.id, 0)
        used_ids[conversation.id] = seen + 1
        if seen:
            conversation.id = f"{conversation.id}_{seen + 1}"
        conversations.append(conversation)

    return conversations
