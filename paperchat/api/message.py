# =============================================================================
# Message API — Document Q&A Endpoint
# =============================================================================
#
# POST /message {documentId, questionText} → {answer}
#
# "Summarize this document" (and close variants) returns the stored summary;
# anything else is answered from the document's own chunks. Routing and
# grounding live in services/qa.py; this endpoint only maps request and
# response.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from paperchat.api.deps import get_qa_service
from paperchat.models.requests import MessageRequest
from paperchat.models.responses import ErrorResponse, MessageResponse
from paperchat.services.qa import QAService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Question Answering"])


@router.post(
    "/message",
    response_model=MessageResponse,
    summary="Ask a question about an uploaded PDF",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def post_message(
    request: MessageRequest,
    qa: QAService = Depends(get_qa_service),
) -> MessageResponse:
    answer = await qa.answer(request.document_id, request.question_text)
    return MessageResponse(answer=answer.text)
