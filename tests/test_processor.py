"""End-to-end tests for the batch processor."""

import re
from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from conftest import BASE_TIME, FakeLLM, FakeVectorSearch, make_hit
from docsyphon.db.repositories import (
    ClassificationRepository,
    JobLockRepository,
    ProposalRepository,
    RagContextRepository,
    ReviewLogRepository,
    RulesetRepository,
    WatermarkRepository,
)
from docsyphon.exceptions import LLMProviderError
from docsyphon.models.db import Message, PipelineLock, ProposalReviewLog
from docsyphon.models.schemas import NO_DOC_VALUE
from docsyphon.pipeline import BatchConfig, BatchProcessor
from docsyphon.pipeline.classifier import ClassificationEngine
from docsyphon.pipeline.generator import ProposalGenerator
from docsyphon.pipeline.preparer import ConversationPreparer
from docsyphon.pipeline.processor import LOCK_NAME
from docsyphon.quality.ruleset import RulesetCache
from docsyphon.retrieval import RetrievalService
from docsyphon.utils.time import as_utc

NOW = BASE_TIME + timedelta(days=2)
STREAM = "telegram-main"
_MSG_ID = re.compile(r"\[MSG_(\d+)\]")


def _thread(ids, category="configuration", summary="Proxy setup") -> dict:
    thread = {
        "category": category,
        "message_ids": list(ids),
        "summary": summary,
        "doc_value_reason": "Undocumented setting" if category != NO_DOC_VALUE else "Chit-chat",
    }
    if category != NO_DOC_VALUE:
        thread["rag_search_criteria"] = {"keywords": ["proxy"], "semantic_query": summary}
    return thread


def _proposal(page="docs/sync.md", text="Set `proxy_url` in settings.toml.") -> dict:
    return {
        "update_type": "UPDATE",
        "page": page,
        "section": "Proxy",
        "suggested_text": text,
        "reasoning": "Users needed this",
        "source_messages": [],
    }


def _no_value_for_all(**call) -> dict:
    ids = [int(i) for i in _MSG_ID.findall(call["user_prompt"])]
    return {"threads": [_thread(ids, category=NO_DOC_VALUE, summary="Chatter")]}


class PipelineHarness:
    """Wires a processor around fake LLMs and search."""

    def __init__(self, db_session: Session, **config):
        self.session = db_session
        self.classification_llm = FakeLLM(model_name="classifier-model")
        self.proposal_llm = FakeLLM(model_name="proposal-model")
        self.search = FakeVectorSearch(
            [make_hit("docs/sync.md", 0.82, "Sync runs every five minutes by default.")]
        )
        self.config = BatchConfig(excluded_streams=["pipeline-test"], **config)
        self.ruleset_cache = RulesetCache(ttl_seconds=0)

    def processor(self, clock=lambda: NOW) -> BatchProcessor:
        classifier = ClassificationEngine(self.classification_llm, "Acme Sync", "file sync")
        preparer = ConversationPreparer(
            RetrievalService(self.search, top_k=3),
            ProposalGenerator(self.proposal_llm, "Acme Sync", "file sync"),
        )
        return BatchProcessor(
            self.session,
            classifier,
            preparer,
            config=self.config,
            ruleset_cache=self.ruleset_cache,
            clock=clock,
            lock_holder="test-runner",
        )

    def run(self, stream_id=None):
        return self.processor().process_batches(stream_id)


@pytest.fixture
def harness(db_session: Session) -> PipelineHarness:
    return PipelineHarness(db_session)


@pytest.fixture
def five_messages(make_message) -> list[Message]:
    return [
        make_message("Sync fails behind our corporate proxy", minutes=0, author="alice"),
        make_message("Which setting did you change?", minutes=1, author="bob"),
        make_message("Set proxy_url in settings.toml, works now", minutes=2, author="alice"),
        make_message("good morning everyone", minutes=3, author="carol"),
        make_message("morning!", minutes=4, author="dave"),
    ]


def _status(session: Session, messages: list[Message]) -> list[str]:
    session.expire_all()
    return [session.get(Message, m.id).processing_status for m in messages]


def _watermark(session: Session):
    row = WatermarkRepository(session).get_by_stream(STREAM)
    return as_utc(row.watermark_time) if row else None


class TestProcessBatches:
    """Test a full processing run."""

    def test_valuable_and_discarded_conversations(
        self, db_session: Session, harness: PipelineHarness, five_messages
    ):
        """Test a thread of three, a no-value singleton and an unclassified message."""
        ids = [m.id for m in five_messages]
        harness.classification_llm.queue(
            {
                "threads": [
                    _thread(ids[:3], category="troubleshooting"),
                    _thread(ids[3:4], category=NO_DOC_VALUE, summary="Greetings"),
                ],
                "batch_summary": "Proxy question and greetings",
            }
        )
        harness.proposal_llm.queue({"proposals": [_proposal()]})

        result = harness.run()

        assert result.skipped is False
        assert result.streams == [STREAM]
        assert result.messages_processed == 5
        assert result.conversations_processed == 2
        assert result.proposals_created == 1
        assert result.failed_messages == 0

        classifications = ClassificationRepository(db_session)
        assert classifications.count() == 5
        assert classifications.get_by_message(ids[0]).model_used == "classifier-model"

        proposals = ProposalRepository(db_session).get_all()
        assert len(proposals) == 1
        assert proposals[0].page == "docs/sync.md"
        assert proposals[0].model_used == "proposal-model"
        assert proposals[0].enrichment["related_docs"][0]["page"] == "docs/sync.md"

        discarded = RagContextRepository(db_session).get_discarded()
        assert len(discarded) == 1
        assert discarded[0].summary == "Greetings"

        assert _status(db_session, five_messages) == ["COMPLETED"] * 5
        assert _watermark(db_session) == BASE_TIME + timedelta(hours=24)
        assert not JobLockRepository(db_session).is_locked(LOCK_NAME, now=NOW)

    def test_search_query_from_criteria(self, harness: PipelineHarness, five_messages):
        """Test retrieval uses the classifier's semantic query."""
        ids = [m.id for m in five_messages]
        harness.classification_llm.queue({"threads": [_thread(ids, summary="proxy setup")]})
        harness.proposal_llm.queue({"proposals": []})

        harness.run()

        assert harness.search.queries == [("proxy setup", 6)]

    def test_messages_missed_by_classifier(
        self, db_session: Session, harness: PipelineHarness, five_messages
    ):
        """Test messages the model skipped are completed via fallback threads."""
        ids = [m.id for m in five_messages]
        harness.classification_llm.queue({"threads": [_thread(ids[:3])]})
        harness.proposal_llm.queue({"proposals": []})

        result = harness.run()

        assert result.messages_processed == 5
        assert result.conversations_processed == 1
        fallback = ClassificationRepository(db_session).get_by_message(ids[4])
        assert fallback.conversation_id is None
        assert fallback.doc_value_reason.startswith("LLM classification error")
        assert RagContextRepository(db_session).get_discarded() == []
        assert _status(db_session, five_messages) == ["COMPLETED"] * 5

    def test_pages_within_window(self, db_session: Session, make_message):
        """Test a window larger than max_batch_size is classified page by page."""
        harness = PipelineHarness(db_session, max_batch_size=2)
        messages = [make_message(f"chat {i}", minutes=i) for i in range(5)]
        harness.classification_llm.queue(*[_no_value_for_all] * 3)

        result = harness.run()

        assert len(harness.classification_llm.calls) == 3
        assert result.messages_processed == 5
        assert _status(db_session, messages) == ["COMPLETED"] * 5

    def test_multiple_windows(self, db_session: Session, harness: PipelineHarness, make_message):
        """Test a stream spanning two windows advances the watermark twice."""
        first = make_message("day one", minutes=0)
        second = make_message("day two", minutes=60 * 24)
        harness.classification_llm.queue(_no_value_for_all, _no_value_for_all)

        harness.run()

        assert _status(db_session, [first, second]) == ["COMPLETED", "COMPLETED"]
        assert _watermark(db_session) == NOW
        prompts = [call["user_prompt"] for call in harness.classification_llm.calls]
        assert "day one" in prompts[1]  # Earlier window shown as context

    def test_excluded_streams_skipped(self, db_session: Session, harness: PipelineHarness, make_message):
        """Test excluded streams are not processed unless requested."""
        message = make_message("test traffic", stream_id="pipeline-test")

        result = harness.run()
        assert result.streams == []
        assert _status(db_session, [message]) == ["PENDING"]

        harness.classification_llm.queue(_no_value_for_all)
        result = harness.run(stream_id="pipeline-test")
        assert result.streams == ["pipeline-test"]
        assert _status(db_session, [message]) == ["COMPLETED"]


class TestFailureHandling:
    """Test failure isolation and retries."""

    def test_one_conversation_fails(
        self, db_session: Session, harness: PipelineHarness, five_messages
    ):
        """Test a failing conversation leaves its messages pending without blocking others."""
        ids = [m.id for m in five_messages]
        harness.classification_llm.queue(
            {
                "threads": [
                    _thread(ids[:3], summary="Proxy setup"),
                    _thread(ids[3:], summary="Morning sync schedule"),
                ]
            }
        )

        def respond(**call):
            if "corporate proxy" in call["user_prompt"]:
                raise LLMProviderError("invalid api key", transient=False)
            return {"proposals": [_proposal(page="docs/schedule.md", text="Sync runs hourly.")]}

        harness.proposal_llm.queue(respond, respond)

        result = harness.run()

        assert result.failed_messages == 3
        assert result.messages_processed == 2
        assert result.proposals_created == 1
        assert _status(db_session, five_messages) == ["PENDING"] * 3 + ["COMPLETED"] * 2

        classifications = ClassificationRepository(db_session)
        assert all(classifications.get_by_message(i) is None for i in ids[:3])
        assert all(classifications.get_by_message(i) is not None for i in ids[3:])
        assert _watermark(db_session) == BASE_TIME

        # Next run retries only the failed conversation
        harness.classification_llm.queue({"threads": [_thread(ids[:3])]})
        harness.proposal_llm.queue({"proposals": [_proposal()]})

        retry = harness.run()

        assert retry.failed_messages == 0
        assert retry.messages_processed == 3
        assert _status(db_session, five_messages) == ["COMPLETED"] * 5
        assert sorted(p.page for p in ProposalRepository(db_session).get_all()) == [
            "docs/schedule.md",
            "docs/sync.md",
        ]
        assert _watermark(db_session) == BASE_TIME + timedelta(hours=24)

    def test_retry_keeps_same_second_neighbour(self, db_session: Session, harness: PipelineHarness, make_message):
        """Test retrying a conversation leaves one that started in the same second intact."""
        proxy = make_message("Sync fails behind our corporate proxy", minutes=0, author="alice")
        port = make_message("Which port does the sync daemon use?", minutes=0, author="bob")
        harness.classification_llm.queue(
            {"threads": [_thread([proxy.id], summary="Proxy setup"), _thread([port.id], summary="Daemon port")]}
        )

        def respond(**call):
            if "daemon use" in call["user_prompt"]:
                raise LLMProviderError("invalid api key", transient=False)
            return {"proposals": [_proposal(page="docs/proxy.md")]}

        harness.proposal_llm.queue(respond, respond)
        harness.run()

        assert [p.page for p in ProposalRepository(db_session).get_all()] == ["docs/proxy.md"]

        harness.classification_llm.queue({"threads": [_thread([port.id], summary="Daemon port")]})
        harness.proposal_llm.queue({"proposals": [_proposal(page="docs/port.md", text="The daemon listens on 8384.")]})
        harness.run()

        assert sorted(p.page for p in ProposalRepository(db_session).get_all()) == [
            "docs/port.md",
            "docs/proxy.md",
        ]
        assert RagContextRepository(db_session).count() == 2
        assert _status(db_session, [proxy, port]) == ["COMPLETED", "COMPLETED"]

    def test_classification_failure_leaves_messages_pending(
        self, db_session: Session, harness: PipelineHarness, five_messages
    ):
        """Test a failed classification call changes nothing."""
        harness.classification_llm.queue(LLMProviderError("upstream down", transient=False))

        result = harness.run()

        assert result.failed_messages == 5
        assert result.messages_processed == 0
        assert ClassificationRepository(db_session).count() == 0
        assert _status(db_session, five_messages) == ["PENDING"] * 5
        assert _watermark(db_session) == BASE_TIME
        assert not JobLockRepository(db_session).is_locked(LOCK_NAME, now=NOW)

    def test_rerun_is_idempotent(self, db_session: Session, harness: PipelineHarness, five_messages):
        """Test reprocessing the same window replaces rather than duplicates results."""
        ids = [m.id for m in five_messages]
        response = {"threads": [_thread(ids[:3]), _thread(ids[3:], category=NO_DOC_VALUE)]}
        harness.classification_llm.queue(response)
        harness.proposal_llm.queue({"proposals": [_proposal()]})
        harness.run()

        # Operator resets the stream and flips the messages back to pending
        WatermarkRepository(db_session).reset(STREAM, BASE_TIME)
        for message in five_messages:
            db_session.get(Message, message.id).processing_status = "PENDING"
        db_session.commit()

        harness.classification_llm.queue(response)
        harness.proposal_llm.queue({"proposals": [_proposal()]})
        harness.run()

        assert ClassificationRepository(db_session).count() == 5
        assert len(ProposalRepository(db_session).get_all()) == 1
        assert RagContextRepository(db_session).count() == 2


class TestRulesetReview:
    """Test ruleset rejection and flags during a run."""

    def test_rejected_proposal_logged(
        self, db_session: Session, harness: PipelineHarness, five_messages
    ):
        """Test a rejected proposal is not stored but its review is logged."""
        RulesetRepository(db_session).save(
            "default",
            "## REJECTION_RULES\n- Reject proposals mentioning \"proxy_url\"\n\n"
            "## QUALITY_GATES\n- Flag if sourceAnalysis.messageCount < 5\n",
        )
        db_session.commit()
        ids = [m.id for m in five_messages]
        harness.classification_llm.queue({"threads": [_thread(ids[:3]), _thread(ids[3:], NO_DOC_VALUE)]})
        harness.proposal_llm.queue(
            {
                "proposals": [
                    _proposal(),
                    _proposal(page="docs/network.md", text="Corporate networks may need extra setup."),
                ]
            }
        )

        result = harness.run()

        assert result.proposals_created == 1
        assert result.proposals_rejected == 1
        [stored] = ProposalRepository(db_session).get_all()
        assert stored.page == "docs/network.md"
        assert "Limited evidence: only 3 messages" in stored.warnings

        logs = db_session.query(ProposalReviewLog).all()
        rejected = [log for log in logs if log.rejected]
        assert len(logs) == 2
        assert len(rejected) == 1
        assert rejected[0].rejection_rule == 'Reject proposals mentioning "proxy_url"'
        assert rejected[0].proposal_id is None
        assert ReviewLogRepository(db_session).get_rejected()[0].page == "docs/sync.md"
        assert _status(db_session, five_messages) == ["COMPLETED"] * 5

    def test_duplicate_content_rejected(
        self, db_session: Session, harness: PipelineHarness, five_messages
    ):
        """Test a proposal repeating an existing doc is rejected by overlap."""
        RulesetRepository(db_session).save(
            "default", "## REJECTION_RULES\n- Reject if duplicationWarning.overlapPercentage > 50\n"
        )
        ids = [m.id for m in five_messages]
        harness.classification_llm.queue({"threads": [_thread(ids)]})
        harness.proposal_llm.queue(
            {"proposals": [_proposal(text="Sync runs every five minutes by default.")]}
        )

        result = harness.run()

        assert result.proposals_created == 0
        assert result.proposals_rejected == 1
        assert ProposalRepository(db_session).get_all() == []
        [log] = ReviewLogRepository(db_session).get_rejected()
        assert log.rejection_rule == "Reject if duplicationWarning.overlapPercentage > 50"
        assert log.rejection_reason == "Duplicate content detected: 100% overlap with docs/sync.md"

    def test_prompt_context_reaches_generator(
        self, db_session: Session, harness: PipelineHarness, five_messages
    ):
        """Test tenant prompt context is injected into proposal prompts."""
        RulesetRepository(db_session).save("default", "## PROMPT_CONTEXT\n- Always mention the version\n")
        ids = [m.id for m in five_messages]
        harness.classification_llm.queue({"threads": [_thread(ids)]})
        harness.proposal_llm.queue({"proposals": []})

        harness.run()

        assert "- Always mention the version" in harness.proposal_llm.calls[0]["system_prompt"]

    def test_clear_ruleset_cache_reloads_rules(self, db_session: Session, harness: PipelineHarness):
        """Test rule edits are picked up after an explicit cache clear."""
        harness.ruleset_cache = RulesetCache(ttl_seconds=300)
        processor = harness.processor()
        repo = RulesetRepository(db_session)
        repo.save("default", '## REJECTION_RULES\n- Reject proposals mentioning "proxy_url"\n')
        first = processor.ruleset_cache.get(db_session, "default")

        repo.save("default", '## REJECTION_RULES\n- Reject proposals mentioning "beta"\n')
        assert processor.ruleset_cache.get(db_session, "default") is first

        processor.clear_ruleset_cache()
        reloaded = processor.ruleset_cache.get(db_session, "default")
        assert [rule.text for rule in reloaded.rejection_rules] == [
            'Reject proposals mentioning "beta"'
        ]


class TestJobLock:
    """Test run exclusion."""

    def test_lock_held_skips_run(self, db_session: Session, harness: PipelineHarness, five_messages):
        """Test a run is skipped while another holds the lock."""
        JobLockRepository(db_session).acquire(LOCK_NAME, "other-host", timedelta(hours=1), now=NOW)

        result = harness.run()

        assert result.skipped is True
        assert harness.classification_llm.calls == []
        assert _status(db_session, five_messages) == ["PENDING"] * 5

    def test_expired_lock_taken_over(self, db_session: Session, harness: PipelineHarness, five_messages):
        """Test a stale lock from a crashed run does not block processing."""
        JobLockRepository(db_session).acquire(
            LOCK_NAME, "crashed-host", timedelta(minutes=5), now=NOW - timedelta(hours=1)
        )
        harness.classification_llm.queue(_no_value_for_all)

        result = harness.run()

        assert result.skipped is False
        assert result.messages_processed == 5

    def test_long_run_renews_lease(self, db_session: Session, make_message):
        """Test a run outlasting the lock TTL keeps its lease by renewing per page."""
        harness = PipelineHarness(db_session, max_batch_size=2, job_lock_ttl_minutes=60)
        messages = [make_message(f"chat {i}", minutes=i) for i in range(5)]
        clock = {"now": NOW}
        intruder_acquired = []

        def slow_page(**call):
            clock["now"] += timedelta(minutes=45)
            intruder_acquired.append(
                JobLockRepository(db_session).acquire(
                    LOCK_NAME, "other-host", timedelta(hours=1), now=clock["now"]
                )
            )
            return _no_value_for_all(**call)

        harness.classification_llm.queue(*[slow_page] * 3)

        result = harness.processor(clock=lambda: clock["now"]).process_batches()

        assert intruder_acquired == [False, False, False]
        assert result.lock_lost is False
        assert _status(db_session, messages) == ["COMPLETED"] * 5
        assert db_session.get(PipelineLock, LOCK_NAME) is None

    def test_lease_taken_over_aborts_run(self, db_session: Session, make_message):
        """Test a run stops before its next page once another holder owns the lease."""
        harness = PipelineHarness(db_session, max_batch_size=2)
        messages = [make_message(f"chat {i}", minutes=i) for i in range(5)]

        def stalled_page(**call):
            JobLockRepository(db_session).acquire(
                LOCK_NAME, "other-host", timedelta(hours=1), now=NOW + timedelta(hours=3)
            )
            return _no_value_for_all(**call)

        harness.classification_llm.queue(stalled_page)

        result = harness.run()

        assert result.lock_lost is True
        assert len(harness.classification_llm.calls) == 1
        assert result.messages_processed == 2
        assert _status(db_session, messages) == ["COMPLETED"] * 2 + ["PENDING"] * 3
        assert _watermark(db_session) == BASE_TIME
        db_session.expire_all()
        assert db_session.get(PipelineLock, LOCK_NAME).holder == "other-host"
