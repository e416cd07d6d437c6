# =============================================================================
# Summarization Workflow
# =============================================================================
#
# Triggered by `document.uploaded`. Three steps, each committed to the run row
# before the next starts:
#
#   ensure-file-record  → FileRecordStore.ensure()         (idempotent)
#   generate-summary    → chat model, N concise paragraphs (pure)
#   persist-summary     → FileRecordStore.update_summary() (processing → completed)
#
# persist-summary is the only step with a user-visible effect, and
# update_summary() is a no-op on a completed record, so a replayed delivery
# can never produce a second status change.
#
# When a step fails permanently the run becomes `failed` and the document is
# marked `failed` with the step error. SummarizationService.retry() is the
# operator path back.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from paperchat.db.models import WorkflowState
from paperchat.errors import (
    InvalidTransitionError,
    NotFoundError,
    WorkflowStepError,
)
from paperchat.services.llm import LLMProvider
from paperchat.services.records import FileRecordStore
from paperchat.workflows.engine import (
    RunOutcome,
    RunSnapshot,
    StepContext,
    WorkflowEngine,
)
from paperchat.workflows.events import DocumentUploaded

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[Text truncated for summary...]"

SUMMARY_SYSTEM_PROMPT = "Summarize this research document in {paragraphs} concise paragraphs."

STEP_ENSURE_RECORD = "ensure-file-record"
STEP_GENERATE_SUMMARY = "generate-summary"
STEP_PERSIST_SUMMARY = "persist-summary"


def build_summary_input(full_text: str, max_chars: int = 30000) -> str:
    """Cap the text sent to the chat model, marking the cut."""
    if len(full_text) <= max_chars:
        return full_text
    return full_text[:max_chars] + TRUNCATION_MARKER


class WorkflowQueue(Protocol):
    """Hands a run's trigger to whatever executes it."""

    def submit(self, run_id: str, payload: dict) -> None:
        ...


# ---------------------------------------------------------------------------
# Workflow Definition
# ---------------------------------------------------------------------------


class SummarizationWorkflow:
    """Step definitions for summarizing one uploaded document."""

    name = "summarize-document"

    def __init__(
        self,
        records: FileRecordStore,
        llm: LLMProvider,
        paragraphs: int = 3,
        max_input_chars: int = 30000,
    ) -> None:
        self._records = records
        self._llm = llm
        self._paragraphs = paragraphs
        self._max_input_chars = max_input_chars

    def run_id_for(self, document_id: str) -> str:
        return f"summarize:{document_id}"

    async def run(self, ctx: StepContext, payload: dict) -> dict:
        event = DocumentUploaded.from_payload(payload)

        await ctx.step(STEP_ENSURE_RECORD, self.ensure_record, event)
        summary = await ctx.step(STEP_GENERATE_SUMMARY, self.generate_summary, event.full_text)
        status = await ctx.step(
            STEP_PERSIST_SUMMARY, self.persist_summary, event.document_id, summary,
        )
        return {"documentId": event.document_id, "status": status}

    async def on_failure(self, run: RunSnapshot, error: WorkflowStepError) -> None:
        try:
            await asyncio.to_thread(self._records.mark_failed, run.document_id, str(error))
        except NotFoundError:
            logger.error(
                "Run %s failed for a document with no record: %s", run.run_id, error,
            )

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    async def ensure_record(self, event: DocumentUploaded) -> str:
        record = await asyncio.to_thread(
            self._records.ensure, event.document_id, event.file_name, event.file_size,
        )
        return record.status.value

    async def generate_summary(self, full_text: str) -> str:
        text = build_summary_input(full_text, self._max_input_chars)
        response = await self._llm.complete(
            messages=[{"role": "user", "content": text}],
            system=SUMMARY_SYSTEM_PROMPT.format(paragraphs=self._paragraphs),
        )
        logger.info(
            "Generated summary (%d chars, model=%s, tokens in/out=%d/%d)",
            len(response.content), response.model,
            response.input_tokens, response.output_tokens,
        )
        return response.content

    async def persist_summary(self, document_id: str, summary: str) -> str:
        record = await asyncio.to_thread(self._records.update_summary, document_id, summary)
        return record.status.value


# ---------------------------------------------------------------------------
# Service Facade
# ---------------------------------------------------------------------------


class SummarizationService:
    """
    Entry points used by ingestion, the worker, and the operator API.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        workflow: SummarizationWorkflow,
        queue: WorkflowQueue,
        records: FileRecordStore,
    ) -> None:
        self._engine = engine
        self._workflow = workflow
        self._queue = queue
        self._records = records

    def enqueue(self, event: DocumentUploaded) -> str:
        """
        Persist the run (if new) and submit it for execution.

        Returns:
            The run id.
        """
        payload = event.to_payload()
        run = self._engine.start(self._workflow, event.document_id, payload)
        self._queue.submit(run.run_id, payload)
        logger.info(
            "Enqueued %s for document %s (run %s)",
            DocumentUploaded.EVENT_NAME, event.document_id, run.run_id,
        )
        return run.run_id

    async def execute(self, payload: dict) -> RunOutcome:
        """Handle one delivery of a `document.uploaded` payload."""
        event = DocumentUploaded.from_payload(payload)
        return await self._engine.execute(self._workflow, event.document_id, payload)

    def resume_unfinished(self) -> list[str]:
        """
        Re-submit every pending or summarizing run. Called at startup for the
        local backend, whose in-memory queue does not survive a restart.
        Runs still leased by a live executor are skipped by execute() and
        redelivered when that lease lapses.
        """
        run_ids = []
        for run in self._engine.store.unfinished_runs():
            self._queue.submit(run.run_id, run.payload)
            run_ids.append(run.run_id)
        if run_ids:
            logger.info("Resubmitted %d unfinished run(s): %s", len(run_ids), run_ids)
        return run_ids

    def run_state(self, document_id: str) -> WorkflowState | None:
        run = self._engine.store.get(self._workflow.run_id_for(document_id))
        return run.state if run else None

    def retry(self, document_id: str) -> str:
        """
        Operator retry of a failed summarization.

        Raises:
            NotFoundError: No workflow run for the document.
            InvalidTransitionError: The run is not failed.
        """
        run_id = self._workflow.run_id_for(document_id)
        run = self._engine.store.get(run_id)
        if run is None:
            raise NotFoundError(f"No summarization run for document '{document_id}'")
        if run.state is not WorkflowState.FAILED:
            raise InvalidTransitionError(
                f"Summarization for '{document_id}' is {run.state.value}, not failed"
            )

        self._records.reopen(document_id)
        if not self._engine.reset(run_id):
            raise InvalidTransitionError(
                f"Summarization for '{document_id}' changed state during retry"
            )

        self._queue.submit(run_id, run.payload)
        logger.info("Re-enqueued run %s after operator retry", run_id)
        return run_id
