# =============================================================================
# Service Container — Explicit Capability Wiring
# =============================================================================
#
# Every client (database engine, embedder, vector store, chat model, Redis,
# queue) is built here, once, from a Settings object, and handed to the
# services that use it. Nothing in the package reaches for a module-level
# client.
#
#   API process:    main.py lifespan → build_container() → app.state
#   Celery worker:  tasks.get_worker_container() → build_container()
#   Tests:          build_container(settings, embedder=..., llm=..., ...)
#
# Any keyword override replaces the client that would have been built from
# settings.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from paperchat.config import Settings
from paperchat.db.engine import (
    SessionFactory,
    create_db_engine,
    create_session_factory,
    init_schema,
)
from paperchat.services.embedder import Embedder, OpenAIEmbedder
from paperchat.services.indexer import VectorIndexer
from paperchat.services.ingestion import DocumentParser, IngestionService
from paperchat.services.llm import LLMProvider, create_llm_provider
from paperchat.services.notifier import (
    CompletionNotifier,
    PollingStatusFeed,
    RedisStatusFeed,
    StatusFeed,
)
from paperchat.services.parser import PdfParser
from paperchat.services.qa import QAService
from paperchat.services.records import FileRecordStore
from paperchat.services.vectorstore import (
    ChromaVectorStore,
    PgVectorStore,
    VectorStore,
)
from paperchat.workflows.engine import RetryPolicy, WorkflowEngine, WorkflowRunStore
from paperchat.workflows.queue import CeleryWorkflowQueue, LocalWorkflowQueue
from paperchat.workflows.summarize import (
    SummarizationService,
    SummarizationWorkflow,
    WorkflowQueue,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    session_factory: SessionFactory
    records: FileRecordStore
    indexer: VectorIndexer
    llm: LLMProvider
    ingestion: IngestionService
    qa: QAService
    summaries: SummarizationService
    queue: WorkflowQueue
    status_feed: StatusFeed
    notifier: CompletionNotifier
    engine: Engine | None = None

    def close(self) -> None:
        shutdown = getattr(self.queue, "shutdown", None)
        if shutdown is not None:
            shutdown()
        if self.engine is not None:
            self.engine.dispose()
        logger.info("Service container closed")


def build_container(
    settings: Settings,
    *,
    session_factory: SessionFactory | None = None,
    embedder: Embedder | None = None,
    vector_store: VectorStore | None = None,
    llm: LLMProvider | None = None,
    parser: DocumentParser | None = None,
    queue: WorkflowQueue | None = None,
    status_feed: StatusFeed | None = None,
    retry_policy: RetryPolicy | None = None,
) -> ServiceContainer:
    """Build every service from `settings` (plus any overrides)."""

    # --- Persistence ---
    engine = None
    if session_factory is None:
        engine = create_db_engine(settings.database_url, echo=settings.debug)
        if settings.create_schema:
            init_schema(engine)
        session_factory = create_session_factory(engine)

    records = FileRecordStore(session_factory)

    # --- Status feed ---
    if status_feed is None:
        if settings.status_feed_type == "redis":
            # Pub/sub carries the changes; the store is re-read only when quiet.
            status_feed = RedisStatusFeed(
                settings.redis_url, records,
                fallback_interval=settings.status_poll_interval * 5,
            )
        else:
            status_feed = PollingStatusFeed(records, settings.status_poll_interval)
    if hasattr(status_feed, "publish"):
        records.add_publisher(status_feed)

    # --- Retrieval ---
    if embedder is None:
        embedder = OpenAIEmbedder(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            batch_size=settings.embedding_batch_size,
            base_url=settings.embedding_base_url,
            fallback_api_key=settings.llm_api_key,
        )
    if vector_store is None:
        if settings.vectorstore_type == "chroma":
            vector_store = ChromaVectorStore(
                collection_name=settings.chroma_collection,
                url=settings.chroma_url,
            )
        else:
            vector_store = PgVectorStore(session_factory)
    indexer = VectorIndexer(embedder, vector_store, default_top_k=settings.retrieval_top_k)

    if llm is None:
        llm = create_llm_provider(settings)

    # --- Summarization workflow ---
    if queue is None:
        if settings.workflow_backend == "local":
            queue = LocalWorkflowQueue(max_workers=settings.workflow_local_workers)
        else:
            from paperchat.workers.celery_app import celery_app

            queue = CeleryWorkflowQueue(celery_app)

    workflow_engine = WorkflowEngine(
        WorkflowRunStore(session_factory),
        retry_policy=retry_policy or RetryPolicy(
            max_attempts=settings.workflow_max_attempts,
            base_delay=settings.workflow_backoff_base,
            multiplier=settings.workflow_backoff_multiplier,
            max_delay=settings.workflow_backoff_max,
        ),
        lease_seconds=settings.workflow_lease_seconds,
    )
    workflow = SummarizationWorkflow(
        records, llm,
        paragraphs=settings.summary_paragraphs,
        max_input_chars=settings.summary_max_input_chars,
    )
    summaries = SummarizationService(workflow_engine, workflow, queue, records)
    if isinstance(queue, LocalWorkflowQueue):
        queue.bind(summaries.execute)

    # --- Request-path services ---
    ingestion = IngestionService(
        parser or PdfParser(),
        indexer,
        records,
        summaries,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        max_upload_bytes=settings.max_upload_bytes,
    )
    qa = QAService(indexer, records, llm, top_k=settings.retrieval_top_k)

    logger.info(
        "Services ready (vectorstore=%s, llm=%s/%s, workflow=%s, status_feed=%s)",
        settings.vectorstore_type, settings.llm_provider, settings.llm_model,
        settings.workflow_backend, settings.status_feed_type,
    )

    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        records=records,
        indexer=indexer,
        llm=llm,
        ingestion=ingestion,
        qa=qa,
        summaries=summaries,
        queue=queue,
        status_feed=status_feed,
        notifier=CompletionNotifier(status_feed),
        engine=engine,
    )
