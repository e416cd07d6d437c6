# =============================================================================
# Workflow Queue Backends
# =============================================================================
#
# Where a `document.uploaded` run goes after ingestion persists it:
#
#   WORKFLOW_BACKEND=celery → CeleryWorkflowQueue
#       send_task("summarize_document", task_id=<run id>) to the broker.
#       A worker process executes it (see paperchat/workers/tasks.py). A
#       delivery that finds the run leased elsewhere is retried by the task
#       when the lease lapses.
#
#   WORKFLOW_BACKEND=local  → LocalWorkflowQueue
#       A ThreadPoolExecutor inside the API process. Each job runs the
#       workflow on its own event loop. A job that finds the run leased
#       elsewhere is re-submitted by a timer when the lease lapses. After a
#       restart the app lifespan calls SummarizationService.resume_unfinished()
#       to re-submit pending and summarizing runs.
#
# Both backends deliver at-least-once; the engine makes that safe.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from celery import Celery

logger = logging.getLogger(__name__)

SUMMARIZE_TASK_NAME = "summarize_document"

PayloadHandler = Callable[[dict], Awaitable[object]]


class CeleryWorkflowQueue:
    """Submits runs to Celery by task name."""

    def __init__(self, celery_app: Celery, task_name: str = SUMMARIZE_TASK_NAME) -> None:
        self._celery_app = celery_app
        self._task_name = task_name

    def submit(self, run_id: str, payload: dict) -> None:
        self._celery_app.send_task(
            self._task_name,
            kwargs={"payload": payload},
            task_id=run_id,
        )
        logger.info("Sent %s task for run %s", self._task_name, run_id)

    def shutdown(self) -> None:
        pass


class LocalWorkflowQueue:
    """
    In-process thread pool. bind() must be called with the payload handler
    (SummarizationService.execute) before the first submit().
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="workflow",
        )
        self._handler: PayloadHandler | None = None
        self._timers: set[threading.Timer] = set()
        self._lock = threading.Lock()
        self._closed = False
        logger.info("Local workflow queue started with %d workers", max_workers)

    def bind(self, handler: PayloadHandler) -> None:
        self._handler = handler

    def submit(self, run_id: str, payload: dict) -> Future:
        if self._handler is None:
            raise RuntimeError("LocalWorkflowQueue has no handler bound")
        logger.info("Queued run %s on local executor", run_id)
        return self._executor.submit(self._run, run_id, payload)

    def _run(self, run_id: str, payload: dict) -> object:
        try:
            outcome = asyncio.run(self._handler(payload))
        except Exception:
            logger.exception("Local execution of run %s crashed", run_id)
            raise

        retry_in = getattr(outcome, "retry_in", None)
        if retry_in is not None:
            self._schedule(run_id, payload, retry_in)
        return outcome

    def _schedule(self, run_id: str, payload: dict, delay: float) -> None:
        with self._lock:
            if self._closed:
                return
            timer = threading.Timer(delay, self._fire, args=(run_id, payload))
            timer.daemon = True
            self._timers.add(timer)
        logger.info("Run %s is leased elsewhere; redelivering in %.0fs", run_id, delay)
        timer.start()

    def _fire(self, run_id: str, payload: dict) -> None:
        with self._lock:
            self._timers.discard(threading.current_thread())
            if self._closed:
                return
        self.submit(run_id, payload)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
        self._executor.shutdown(wait=wait)
        logger.info("Local workflow queue stopped")
