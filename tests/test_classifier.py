"""Tests for batch classification."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME, FakeLLM
from docsyphon.exceptions import (
    ClassificationError,
    LLMProviderError,
    LLMSchemaValidationError,
)
from docsyphon.models.db import Message
from docsyphon.models.schemas import NO_DOC_VALUE, BatchClassificationResponse, ClassifiedThread
from docsyphon.pipeline.classifier import (
    SAFETY_NET_REASON,
    ClassificationEngine,
    normalize_threads,
    safety_net_threads,
)
from docsyphon.pipeline.prompts import NO_CONTEXT_MESSAGES


def _messages(*ids: int) -> list[Message]:
    return [
        Message(
            id=message_id,
            stream_id="telegram-main",
            timestamp=BASE_TIME + timedelta(minutes=i),
            author="alice",
            content=f"message {message_id}",
            channel="support",
        )
        for i, message_id in enumerate(ids)
    ]


def _thread(ids, category="troubleshooting", **kwargs) -> dict:
    thread = {
        "category": category,
        "message_ids": list(ids),
        "summary": kwargs.get("summary", "Sync fails behind proxy"),
        "doc_value_reason": kwargs.get("reason", "Resolution worth documenting"),
    }
    if category != NO_DOC_VALUE:
        thread["rag_search_criteria"] = {
            "keywords": ["sync", "proxy"],
            "semantic_query": "configure sync behind an HTTP proxy",
        }
    return thread


class TestNormalizeThreads:
    """Test thread normalization."""

    def test_drops_context_and_unknown_ids(self):
        """Test ids outside the batch are removed from threads."""
        threads = [ClassifiedThread.model_validate(_thread([1, 99, 2]))]
        normalized = normalize_threads(threads, {1, 2})
        assert normalized[0].message_ids == [1, 2]

    def test_duplicate_ids_keep_first_thread(self):
        """Test an id claimed by two threads stays in the first one only."""
        threads = [
            ClassifiedThread.model_validate(_thread([1, 2])),
            ClassifiedThread.model_validate(_thread([2, 3], category=NO_DOC_VALUE)),
        ]
        normalized = normalize_threads(threads, {1, 2, 3})
        assert [t.message_ids for t in normalized] == [[1, 2], [3]]

    def test_threads_left_empty_are_removed(self):
        """Test threads that only referenced context messages disappear."""
        threads = [ClassifiedThread.model_validate(_thread([50, 51]))]
        assert normalize_threads(threads, {1}) == []


class TestSafetyNet:
    """Test fallback threads for uncovered messages."""

    def test_creates_one_thread_per_missing_message(self):
        """Test each uncovered message gets its own no-doc-value thread."""
        batch = _messages(1, 2, 3)
        threads = [ClassifiedThread.model_validate(_thread([1]))]

        fallback = safety_net_threads(threads, batch)

        assert [t.message_ids for t in fallback] == [[2], [3]]
        assert all(t.category == NO_DOC_VALUE for t in fallback)
        assert all(t.doc_value_reason == SAFETY_NET_REASON for t in fallback)

    def test_no_fallback_when_covered(self):
        """Test full coverage creates no fallback threads."""
        batch = _messages(1)
        threads = [ClassifiedThread.model_validate(_thread([1]))]
        assert safety_net_threads(threads, batch) == []


class TestClassificationEngine:
    """Test the classification engine."""

    def _engine(self, llm: FakeLLM) -> ClassificationEngine:
        return ClassificationEngine(
            llm, project_name="Acme Sync", project_domain="file sync", max_tokens=8000
        )

    def test_classify_partitions_batch(self):
        """Test every batch message ends up in exactly one thread."""
        llm = FakeLLM([{"threads": [_thread([1, 2])], "batch_summary": "Proxy issue"}])
        batch = _messages(1, 2, 3)

        result = self._engine(llm).classify(batch, [])

        assert result.message_ids == {1, 2, 3}
        assert len(result.threads) == 1
        assert [t.message_ids for t in result.synthetic_threads] == [[3]]
        assert result.batch_summary == "Proxy issue"
        assert result.model_used == "fake-model"

    def test_request_parameters(self):
        """Test the classifier asks for the batch schema with its token budget."""
        llm = FakeLLM([{"threads": [_thread([1])]}])
        self._engine(llm).classify(_messages(1), [])

        call = llm.calls[0]
        assert call["response_model"] is BatchClassificationResponse
        assert call["max_tokens"] == 8000
        assert call["purpose"] == "classification"
        assert "Acme Sync" in call["system_prompt"]
        assert "[MSG_1]" in call["user_prompt"]
        assert NO_CONTEXT_MESSAGES in call["user_prompt"]

    def test_context_rendered_without_ids(self):
        """Test context messages appear in the prompt but not as classifiable ids."""
        llm = FakeLLM([{"threads": [_thread([2])]}])
        context = _messages(1)
        self._engine(llm).classify(_messages(2), context)

        prompt = llm.calls[0]["user_prompt"]
        assert "message 1" in prompt
        assert "[MSG_1]" not in prompt
        assert NO_CONTEXT_MESSAGES not in prompt

    def test_empty_batch_skips_llm(self):
        """Test an empty batch returns an empty result without calling the model."""
        llm = FakeLLM()
        result = self._engine(llm).classify([], _messages(1))
        assert result.all_threads == []
        assert llm.calls == []

    def test_provider_error_wrapped(self):
        """Test provider failures surface as ClassificationError."""
        error = LLMProviderError("boom", transient=True)
        llm = FakeLLM([error])

        with pytest.raises(ClassificationError) as exc_info:
            self._engine(llm).classify(_messages(1), [])

        assert exc_info.value.__cause__ is error

    def test_schema_error_wrapped(self):
        """Test schema validation failures surface as ClassificationError."""
        llm = FakeLLM([LLMSchemaValidationError("classification", ["bad"])])
        with pytest.raises(ClassificationError):
            self._engine(llm).classify(_messages(1), [])
