# =============================================================================
# Upload API — PDF Ingestion
# =============================================================================
#
# ENDPOINTS:
#   POST /pdf-upload  — Upload a PDF; returns once its chunks are indexed
#
# The handler is a plain `def`: parsing, embedding and database writes are
# blocking, and FastAPI runs sync handlers in its threadpool so the event
# loop keeps serving other requests.
#
# Summarization is NOT part of this request. The response comes back while
# the summary is still being generated; clients watch
# GET /documents/{id}/events or ask "summarize this document" later.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, File, UploadFile

from paperchat.api.deps import get_ingestion_service
from paperchat.errors import ValidationError
from paperchat.models.responses import ErrorResponse, UploadResponse
from paperchat.services.ingestion import IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Upload"])


@router.post(
    "/pdf-upload",
    response_model=UploadResponse,
    summary="Upload a PDF for question answering",
    description=(
        "Extracts, chunks and indexes the PDF, then starts background "
        "summarization. The document can be queried as soon as this returns."
    ),
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def upload_pdf(
    file: UploadFile | None = File(
        default=None,
        description="PDF file (max 10 MiB)",
    ),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> UploadResponse:
    if file is None:
        raise ValidationError("No file provided")

    # One byte past the limit is enough to reject an oversized file.
    data = file.file.read(ingestion.max_upload_bytes + 1)
    logger.info(
        "Received upload: %s (%d bytes, content_type=%s)",
        file.filename, len(data), file.content_type,
    )

    result = ingestion.ingest(file.filename, file.content_type, data)

    return UploadResponse(
        document_id=result.document_id,
        chunk_count=result.chunk_count,
        message=(
            f"Document '{file.filename}' indexed into {result.chunk_count} "
            "chunks. Summary is being generated."
        ),
    )
