# =============================================================================
# Documents API — Status, Completion Events, Operator Retry
# =============================================================================
#
# ENDPOINTS:
#   GET  /documents/{id}                — current File Record
#   GET  /documents/{id}/events         — Server-Sent Events status stream
#   POST /documents/{id}/summary/retry  — restart a failed summarization
#
# SSE Format (one event per status change, current state first):
#
#   event: status
#   data: {"document_id": ..., "status": "processing", ...}
#
# The stream closes after the first `completed` or `failed` event. For a
# document id that does not exist yet the stream stays open and quiet.
# =============================================================================

import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from paperchat.api.deps import (
    get_record_store,
    get_status_feed,
    get_summarization_service,
)
from paperchat.models.responses import DocumentResponse, ErrorResponse
from paperchat.services.notifier import StatusFeed
from paperchat.services.records import FileRecordStore
from paperchat.workflows.summarize import SummarizationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.get(
    "/{document_id}",
    response_model=DocumentResponse,
    summary="Get a document's processing status and summary",
    responses={404: {"model": ErrorResponse}},
)
def get_document(
    document_id: str,
    records: FileRecordStore = Depends(get_record_store),
) -> DocumentResponse:
    return DocumentResponse.from_record(records.get(document_id))


@router.get(
    "/{document_id}/events",
    summary="Stream status changes until the summary is ready",
    response_class=StreamingResponse,
)
async def document_events(
    document_id: str,
    feed: StatusFeed = Depends(get_status_feed),
) -> StreamingResponse:
    logger.info("Opening status stream for document_id=%s", document_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        events = feed.watch(document_id)
        try:
            async for event in events:
                data = json.dumps(event.to_dict())
                yield f"event: status\ndata: {data}\n\n"
                if event.is_terminal:
                    logger.info(
                        "Status stream for document_id=%s finished (%s)",
                        document_id, event.status.value,
                    )
                    break
        finally:
            await events.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.post(
    "/{document_id}/summary/retry",
    response_model=DocumentResponse,
    status_code=202,
    summary="Retry a failed summarization",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def retry_summary(
    document_id: str,
    summaries: SummarizationService = Depends(get_summarization_service),
    records: FileRecordStore = Depends(get_record_store),
) -> DocumentResponse:
    summaries.retry(document_id)
    return DocumentResponse.from_record(records.get(document_id))
