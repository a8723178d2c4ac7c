"""
Reply-chain resolution for classifier prompts.

Chat imports record which message a reply points at. When the target is in
the same batch, the reply is indented under it so the model can see the
thread structure. Replies to messages outside the batch stay at depth 0.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from docsyphon.models.db import Message
from docsyphon.models.pipeline import MessageMetadata
from docsyphon.utils.time import as_utc

REPLY_MARKER = "↳ Reply to message above"
INDENT = "  "


@dataclass
class ReplyInfo:
    reply_to_id: Optional[int] = None
    depth: int = 0


def resolve_reply_chains(messages: Iterable[Message]) -> dict[int, ReplyInfo]:
    """
    Map each message id to its in-batch reply target and nesting depth.

    Args:
        messages: Batch messages

    Returns:
        Dict of message id to ReplyInfo; every input message has an entry
    """
    messages = list(messages)
    by_external_id = {m.external_id: m.id for m in messages if m.external_id}

    chains: dict[int, ReplyInfo] = {}
    for message in messages:
        target = MessageMetadata.from_dict(message.message_metadata).reply_target
        reply_to_id = by_external_id.get(target) if target else None
        if reply_to_id == message.id:
            reply_to_id = None
        chains[message.id] = ReplyInfo(reply_to_id=reply_to_id)

    def depth_of(message_id: int, visited: set[int]) -> int:
        if message_id in visited:
            return 0  # Cycle
        info = chains.get(message_id)
        if info is None or info.reply_to_id is None:
            return 0
        visited.add(message_id)
        return 1 + depth_of(info.reply_to_id, visited)

    for message_id, info in chains.items():
        info.depth = depth_of(message_id, set())

    return chains


def format_message(message: Message, depth: int = 0) -> str:
    """Render one message as '[iso] author in channel [Topic: t]: content'."""
    indent = INDENT * depth
    topic = MessageMetadata.from_dict(message.message_metadata).topic
    topic_part = f" [Topic: {topic}]" if topic else ""
    line = (
        f"{indent}[{as_utc(message.timestamp).isoformat()}] {message.author} in "
        f"{message.channel or 'general'}{topic_part}: {message.content}"
    )
    if depth > 0:
        return f"{indent}{REPLY_MARKER}\n{line}"
    return line


def format_context_messages(messages: list[Message]) -> str:
    """Context block: one message per line, no ids, no reply nesting."""
    return "\n".join(format_message(m) for m in messages)


def format_batch_messages(
    messages: list[Message], chains: Optional[dict[int, ReplyInfo]] = None
) -> str:
    """Batch block: '[MSG_<id>]' prefixed entries separated by blank lines."""
    if chains is None:
        chains = resolve_reply_chains(messages)
    entries = []
    for message in messages:
        info = chains.get(message.id)
        entries.append(f"[MSG_{message.id}] {format_message(message, info.depth if info else 0)}")
    return "\n\n".join(entries)
