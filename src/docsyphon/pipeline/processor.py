"""
Batch processor.

Drives one processing run: takes the job lock, walks each stream with
PENDING messages window by window, and per page of messages runs
classification, conversation assembly, the per-conversation prepare step
(on a thread pool) and persistence. A stream's watermark only moves past a
window once every message in it completed; the first window with a failure
ends that stream's run so the next run retries it.
"""

import logging
import os
import socket
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from docsyphon.config import Settings, settings as default_settings
from docsyphon.db.repositories import (
    JobLockRepository,
    MessageRepository,
    ProposalRepository,
    WatermarkRepository,
)
from docsyphon.exceptions import ClassificationError, JobLockError
from docsyphon.llm import build_llm_client
from docsyphon.llm.structured import StructuredLLM
from docsyphon.models.db import Message
from docsyphon.models.pipeline import BatchWindow, ConversationGroup, ConversationOutcome
from docsyphon.pipeline.assembler import assemble_conversations
from docsyphon.pipeline.classifier import BatchClassification, ClassificationEngine
from docsyphon.pipeline.generator import ProposalGenerator
from docsyphon.pipeline.persistence import PipelinePersistence
from docsyphon.pipeline.preparer import ConversationPreparer
from docsyphon.pipeline.window import BatchWindowPlanner
from docsyphon.quality.enrichment import EnrichmentConfig, ProposalEnricher
from docsyphon.quality.ruleset import ParsedRuleset, RulesetCache
from docsyphon.quality.transform import ContentValidator, LengthReducer
from docsyphon.retrieval.service import RetrievalService, VectorSearch
from docsyphon.utils.time import utc_now

logger = logging.getLogger(__name__)

LOCK_NAME = "batch-processing"


def build_rewrite_steps(config: Settings, llm: StructuredLLM) -> list:
    """The optional LLM rewrite steps enabled in config, in run order."""
    steps = []
    if config.content_validation_enabled:
        steps.append(
            ContentValidator(
                llm,
                project_name=config.project_name,
                max_retries=config.content_validation_max_retries,
                skip_patterns=config.content_validation_skip_patterns,
                max_tokens=config.rewrite_max_tokens,
            )
        )
    if config.length_reduction_enabled:
        steps.append(
            LengthReducer(
                llm,
                project_name=config.project_name,
                max_length=config.length_reduction_max_length,
                target_length=config.length_reduction_target_length,
                max_tokens=config.rewrite_max_tokens,
            )
        )
    return steps


@dataclass
class BatchConfig:
    """Tunables for a processing run."""

    batch_window_hours: int = 24
    context_window_hours: int = 24
    max_batch_size: int = 30
    context_max_messages: int = 100
    max_conversation_workers: int = 4
    excluded_streams: list[str] = field(default_factory=lambda: ["pipeline-test"])
    job_lock_ttl_minutes: int = 120
    tenant_id: str = "default"

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "BatchConfig":
        config = config or default_settings
        return cls(
            batch_window_hours=config.batch_window_hours,
            context_window_hours=config.context_window_hours,
            max_batch_size=config.max_batch_size,
            context_max_messages=config.context_max_messages,
            max_conversation_workers=config.max_conversation_workers,
            excluded_streams=list(config.excluded_streams),
            job_lock_ttl_minutes=config.job_lock_ttl_minutes,
            tenant_id=config.tenant_id,
        )


@dataclass
class ProcessingResult:
    """Summary of one processing run."""

    messages_processed: int = 0
    conversations_processed: int = 0
    proposals_created: int = 0
    proposals_rejected: int = 0
    failed_messages: int = 0
    streams: list[str] = field(default_factory=list)
    skipped: bool = False
    lock_lost: bool = False


def default_lock_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class BatchProcessor:
    """Processes PENDING messages into classifications and proposals."""

    def __init__(
        self,
        session: Session,
        classifier: ClassificationEngine,
        preparer: ConversationPreparer,
        config: Optional[BatchConfig] = None,
        ruleset_cache: Optional[RulesetCache] = None,
        clock: Callable[[], datetime] = utc_now,
        lock_holder: Optional[str] = None,
    ):
        """
        Args:
            session: Database session used for every read and write
            classifier: Batch classification engine
            preparer: Per-conversation retrieval/generation/review step
            config: Run tunables (defaults from settings)
            ruleset_cache: Tenant ruleset cache, shared across runs
            clock: Returns the current aware UTC time
            lock_holder: Identifier recorded on the job lock
        """
        self.session = session
        self.classifier = classifier
        self.preparer = preparer
        self.config = config or BatchConfig.from_settings()
        self.ruleset_cache = ruleset_cache or RulesetCache()
        self.clock = clock
        self.lock_holder = lock_holder or default_lock_holder()

        self.messages = MessageRepository(session)
        self.watermarks = WatermarkRepository(session)
        self.locks = JobLockRepository(session)
        self.persistence = PipelinePersistence(session)
        self.planner = BatchWindowPlanner(
            self.messages,
            self.watermarks,
            window_hours=self.config.batch_window_hours,
            context_hours=self.config.context_window_hours,
            context_limit=self.config.context_max_messages,
        )

    @classmethod
    def from_settings(
        cls,
        session: Session,
        search: VectorSearch,
        config: Optional[Settings] = None,
        classification_llm: Optional[StructuredLLM] = None,
        proposal_llm: Optional[StructuredLLM] = None,
        ruleset_cache: Optional[RulesetCache] = None,
    ) -> "BatchProcessor":
        """
        Build a processor wired from settings.

        LLM clients are built for the configured provider unless given.

        Raises:
            ConfigurationError: If an LLM client is needed and no API key is set
        """
        config = config or default_settings
        classification_llm = classification_llm or build_llm_client(
            config.classification_model, config
        )
        proposal_llm = proposal_llm or build_llm_client(config.proposal_model, config)

        classifier = ClassificationEngine(
            classification_llm,
            project_name=config.project_name,
            project_domain=config.project_domain,
            max_tokens=config.classification_max_tokens,
        )
        preparer = ConversationPreparer(
            RetrievalService(search, top_k=config.rag_top_k),
            ProposalGenerator(
                proposal_llm,
                project_name=config.project_name,
                project_domain=config.project_domain,
                max_tokens=config.proposal_max_tokens,
                max_proposals=config.max_proposals_per_conversation,
            ),
            ProposalEnricher(
                EnrichmentConfig(
                    related_doc_min_similarity=config.related_doc_min_similarity,
                    related_doc_max=config.related_doc_max,
                    duplication_threshold=config.duplication_threshold,
                    ngram_size=config.duplication_ngram_size,
                )
            ),
            build_rewrite_steps(config, classification_llm),
        )
        return cls(
            session,
            classifier,
            preparer,
            config=BatchConfig.from_settings(config),
            ruleset_cache=ruleset_cache or RulesetCache(config.ruleset_cache_ttl_seconds),
        )

    def clear_ruleset_cache(self) -> None:
        """Make the next batch reload the tenant ruleset."""
        self.ruleset_cache.clear(self.config.tenant_id)

    def process_batches(self, stream_id: Optional[str] = None) -> ProcessingResult:
        """
        Run the pipeline over every stream with PENDING messages.

        Args:
            stream_id: Process only this stream (ignores the exclusion list)

        Returns:
            ProcessingResult; ``skipped`` is set when another run holds the lock
            and ``lock_lost`` when the lease was taken over mid-run, which aborts
            the remaining work
        """
        now = self.clock()
        ttl = self._lock_ttl()
        if not self.locks.acquire(LOCK_NAME, self.lock_holder, ttl, now=now):
            logger.info("Batch processing already running, skipping this trigger")
            return ProcessingResult(skipped=True)

        result = ProcessingResult()
        try:
            if stream_id:
                streams = [stream_id]
            else:
                streams = self.messages.get_streams_with_pending(
                    exclude=self.config.excluded_streams
                )
            logger.info(f"Processing {len(streams)} streams: {streams}")

            for stream in streams:
                result.streams.append(stream)
                self._process_stream(stream, now, result)
        except JobLockError as e:
            logger.error(f"Aborting batch processing: {e}")
            result.lock_lost = True
        finally:
            if not result.lock_lost:
                try:
                    self.locks.release(LOCK_NAME, self.lock_holder)
                except JobLockError as e:
                    logger.warning(f"Could not release job lock: {e}")

        logger.info(
            f"Batch processing complete: {result.messages_processed} messages, "
            f"{result.conversations_processed} conversations, "
            f"{result.proposals_created} proposals created, "
            f"{result.proposals_rejected} rejected by ruleset, "
            f"{result.failed_messages} failed messages"
        )
        return result

    def _lock_ttl(self) -> timedelta:
        return timedelta(minutes=self.config.job_lock_ttl_minutes)

    def _renew_lock(self) -> None:
        """Extend the lease before more work starts; raises JobLockError once it is lost."""
        if not self.locks.renew(LOCK_NAME, self.lock_holder, self._lock_ttl(), now=self.clock()):
            raise JobLockError(LOCK_NAME, self.lock_holder)

    def _process_stream(self, stream_id: str, now: datetime, result: ProcessingResult) -> None:
        watermark = self.watermarks.get_or_init(stream_id, now)
        self.session.commit()
        logger.info(f"Stream {stream_id}: watermark {watermark.isoformat()}")

        while True:
            window = self.planner.next_window(stream_id, watermark, now)
            self.session.commit()  # Empty-window watermark advances
            if window is None:
                break

            logger.info(
                f"Stream {stream_id}: processing window {window.start.isoformat()} "
                f"to {window.end.isoformat()} (batch {window.batch_id})"
            )
            if not self._process_window(window, result):
                logger.warning(
                    f"Stream {stream_id}: batch {window.batch_id} had failures, "
                    f"watermark stays at {watermark.isoformat()} until the next run"
                )
                break

            watermark = self.watermarks.advance(stream_id, window.end, now)
            self.session.commit()
            logger.info(f"Stream {stream_id}: watermark advanced to {watermark.isoformat()}")

    def _process_window(self, window: BatchWindow, result: ProcessingResult) -> bool:
        """Process every page of a window. Returns True when nothing failed."""
        attempted: set[int] = set()
        context = self.planner.context_for(window)
        succeeded = True

        while True:
            self._renew_lock()
            page = self.planner.next_page(window, self.config.max_batch_size, attempted)
            if not page:
                break
            attempted.update(m.id for m in page)

            try:
                classification = self.classifier.classify(page, context)
            except ClassificationError as e:
                logger.error(f"Batch {window.batch_id}: {e}", exc_info=True)
                result.failed_messages += len(page)
                return False

            if not self._process_page(window, page, classification, result):
                succeeded = False

        return succeeded

    def _process_page(
        self,
        window: BatchWindow,
        page: list[Message],
        classification: BatchClassification,
        result: ProcessingResult,
    ) -> bool:
        conversations = assemble_conversations(classification.all_threads, page)
        self.persistence.save_classifications(classification, conversations, window.batch_id)
        self.session.commit()

        valuable = [c for c in conversations if c.has_doc_value and not c.synthetic]
        discarded = [c for c in conversations if not c.has_doc_value or c.synthetic]

        ruleset: Optional[ParsedRuleset] = None
        pending_proposals = 0
        if valuable:
            ruleset = self.ruleset_cache.get(self.session, self.config.tenant_id)
            pending_proposals = ProposalRepository(self.session).count_pending()
        outcomes = self._prepare_all(valuable, ruleset, pending_proposals)

        failed_ids: list[int] = []
        for conversation in discarded:
            try:
                self.persistence.save_discarded(conversation, window.batch_id)
            except Exception as e:
                logger.error(
                    f"Failed to persist discarded conversation {conversation.id}: {e}",
                    exc_info=True,
                )
                failed_ids.extend(conversation.message_ids)
                continue
            result.messages_processed += conversation.message_count
            if not conversation.synthetic:
                result.conversations_processed += 1

        for conversation in valuable:
            outcome = outcomes[conversation.id]
            if isinstance(outcome, Exception):
                failed_ids.extend(conversation.message_ids)
                continue
            try:
                counts = self.persistence.save_outcome(outcome, window.batch_id, ruleset)
            except Exception as e:
                logger.error(
                    f"Failed to persist conversation {conversation.id}: {e}", exc_info=True
                )
                failed_ids.extend(conversation.message_ids)
                continue
            result.messages_processed += conversation.message_count
            result.conversations_processed += 1
            result.proposals_created += counts.proposals_created
            result.proposals_rejected += counts.proposals_rejected

        if failed_ids:
            self.persistence.purge_failed(failed_ids)
            result.failed_messages += len(failed_ids)
        self.session.commit()

        logger.info(
            f"Batch {window.batch_id}: {len(page)} messages, {len(conversations)} "
            f"conversations ({len(valuable)} valuable), {len(failed_ids)} failed messages"
        )
        return not failed_ids

    def _prepare_all(
        self,
        conversations: list[ConversationGroup],
        ruleset: Optional[ParsedRuleset],
        pending_proposals: int,
    ) -> dict[str, Union[ConversationOutcome, Exception]]:
        """Run the prepare step for each conversation on the worker pool."""
        if not conversations:
            return {}

        outcomes: dict[str, Union[ConversationOutcome, Exception]] = {}
        workers = max(1, min(self.config.max_conversation_workers, len(conversations)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="prepare") as executor:
            futures = {
                executor.submit(self.preparer.prepare, c, ruleset, pending_proposals): c
                for c in conversations
            }
            for future in as_completed(futures):
                conversation = futures[future]
                try:
                    outcomes[conversation.id] = future.result()
                except Exception as e:
                    logger.error(
                        f"Failed to prepare conversation {conversation.id}: {e}",
                        exc_info=True,
                    )
                    outcomes[conversation.id] = e
        return outcomes
