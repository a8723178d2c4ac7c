"""Tests for reply-chain resolution and message formatting."""

from datetime import timedelta

from conftest import BASE_TIME
from docsyphon.models.db import Message
from docsyphon.pipeline.reply_chain import (
    REPLY_MARKER,
    format_batch_messages,
    format_context_messages,
    format_message,
    resolve_reply_chains,
)


def _message(id, external_id=None, reply_to=None, chat="100", minutes=0, **kwargs):
    metadata = kwargs.pop("metadata", None)
    if metadata is None and reply_to is not None:
        metadata = {"chat_id": chat, "reply_to_message_id": reply_to}
    return Message(
        id=id,
        stream_id="telegram-main",
        external_id=external_id,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        author=kwargs.pop("author", "alice"),
        content=kwargs.pop("content", f"message {id}"),
        channel=kwargs.pop("channel", "support"),
        message_metadata=metadata,
    )


class TestResolveReplyChains:
    """Test reply target and depth resolution."""

    def test_nested_replies(self):
        """Test depth grows along an in-batch reply chain."""
        messages = [
            _message(1, external_id="100-1"),
            _message(2, external_id="100-2", reply_to="1"),
            _message(3, external_id="100-3", reply_to="2"),
        ]
        chains = resolve_reply_chains(messages)

        assert chains[1].reply_to_id is None and chains[1].depth == 0
        assert chains[2].reply_to_id == 1 and chains[2].depth == 1
        assert chains[3].reply_to_id == 2 and chains[3].depth == 2

    def test_reply_outside_batch(self):
        """Test replies to messages outside the batch stay at depth 0."""
        chains = resolve_reply_chains([_message(5, external_id="100-5", reply_to="1")])
        assert chains[5].reply_to_id is None
        assert chains[5].depth == 0

    def test_missing_metadata(self):
        """Test messages without reply metadata are plain entries."""
        chains = resolve_reply_chains([_message(1), _message(2, metadata={"topic": "Sync"})])
        assert all(info.depth == 0 for info in chains.values())

    def test_non_object_metadata_ignored(self):
        """Test metadata stored as a JSON list or string is treated as absent."""
        messages = [
            _message(1, external_id="100-1", metadata=["100", "1"]),
            _message(2, external_id="100-2", metadata="reply to 1"),
        ]
        chains = resolve_reply_chains(messages)

        assert all(info.depth == 0 for info in chains.values())
        assert "[MSG_2]" in format_batch_messages(messages)

    def test_camel_case_metadata_keys(self):
        """Test camelCase metadata keys are recognised."""
        messages = [
            _message(1, external_id="7-10"),
            _message(2, external_id="7-11", metadata={"chatId": 7, "replyToMessageId": 10}),
        ]
        assert resolve_reply_chains(messages)[2].reply_to_id == 1

    def test_self_reply_ignored(self):
        """Test a message replying to itself is not nested."""
        chains = resolve_reply_chains([_message(1, external_id="100-1", reply_to="1")])
        assert chains[1].reply_to_id is None

    def test_cycle_terminates(self):
        """Test a reply cycle does not recurse forever."""
        messages = [
            _message(1, external_id="100-1", reply_to="2"),
            _message(2, external_id="100-2", reply_to="1"),
        ]
        chains = resolve_reply_chains(messages)
        assert chains[1].depth <= 2
        assert chains[2].depth <= 2


class TestFormatting:
    """Test prompt formatting of messages."""

    def test_format_message_with_topic(self):
        """Test topic and channel appear in the rendered line."""
        message = _message(1, metadata={"topic": "Installation"}, content="It fails")
        line = format_message(message)
        assert line == (
            f"[{BASE_TIME.isoformat()}] alice in support [Topic: Installation]: It fails"
        )

    def test_format_message_default_channel(self):
        """Test messages without a channel render as general."""
        assert " in general: " in format_message(_message(1, channel=None))

    def test_format_reply_is_indented(self):
        """Test replies carry the reply marker and indentation."""
        rendered = format_message(_message(2), depth=2)
        marker_line, line = rendered.split("\n")
        assert marker_line == f"    {REPLY_MARKER}"
        assert line.startswith("    [")

    def test_format_batch_messages(self):
        """Test batch entries are id-prefixed and separated by blank lines."""
        messages = [
            _message(1, external_id="100-1"),
            _message(2, external_id="100-2", reply_to="1", minutes=1),
        ]
        text = format_batch_messages(messages)
        first, second = text.split("\n\n")

        assert first.startswith("[MSG_1] [")
        assert second.startswith(f"[MSG_2]   {REPLY_MARKER}")

    def test_format_context_messages(self):
        """Test context lines carry no ids."""
        text = format_context_messages([_message(1), _message(2, minutes=5)])
        assert "MSG_" not in text
        assert len(text.split("\n")) == 2
