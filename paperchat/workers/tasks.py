# =============================================================================
# Celery Task Definitions — Summarization Workflow
# =============================================================================
#
# `summarize_document` is one delivery of a `document.uploaded` payload. All
# the work (run claim, steps, retries, failure marking) happens in the
# workflow engine; the task only bridges Celery to it.
#
# Celery workers are synchronous: the task drives the async workflow with
# asyncio.run(), one fresh event loop per delivery.
#
# RETRY STRATEGY:
# Step-level retries (rate limits, model outages) happen inside the engine.
# The OperationalError retry below covers only the database being unreachable before
# the run could even be claimed or recorded. A redelivered run resumes after
# its last committed step.
#
# A delivery that finds the run leased by another worker is retried with a
# countdown of the time left on that lease, so the run is reclaimed if that
# worker died mid-run. Those retries do not count against max_retries.
# =============================================================================

import asyncio
import logging
from functools import lru_cache

from sqlalchemy.exc import OperationalError

from paperchat.config import get_settings
from paperchat.dependencies import ServiceContainer, build_container
from paperchat.workers.celery_app import celery_app
from paperchat.workflows.queue import SUMMARIZE_TASK_NAME

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_worker_container() -> ServiceContainer:
    """One container per worker process, built on first task."""
    return build_container(get_settings())


@celery_app.task(
    bind=True,
    name=SUMMARIZE_TASK_NAME,
    max_retries=3,
    default_retry_delay=60,
)
def summarize_document(self, payload: dict) -> dict:
    """
    Execute (or resume) the summarization run for one uploaded document.

    Returns:
        RunOutcome as a dict: run_id, state, executed, result, error.
    """
    task_id = self.request.id
    document_id = payload.get("documentId")
    logger.info(
        "[%s] Received summarize_document for document_id=%s (retries=%d)",
        task_id, document_id, self.request.retries,
    )

    container = get_worker_container()
    try:
        outcome = asyncio.run(container.summaries.execute(payload))
    except OperationalError as exc:
        logger.exception(
            "[%s] Database unavailable while running document_id=%s",
            task_id, document_id,
        )
        raise self.retry(exc=exc)

    if outcome.retry_in is not None:
        logger.info(
            "[%s] Run %s is leased elsewhere (state=%s); redelivering in %.0fs",
            task_id, outcome.run_id, outcome.state.value, outcome.retry_in,
        )
        raise self.retry(countdown=outcome.retry_in, max_retries=None)

    logger.info(
        "[%s] Run %s finished delivery: state=%s executed=%s",
        task_id, outcome.run_id, outcome.state.value, outcome.executed,
    )
    return outcome.to_dict()
