# =============================================================================
# Retrieval QA Service — Intent Routing + Grounded Answers
# =============================================================================
#
# One entry point, answer(document_id, question), with two paths:
#
#   Intent.SUMMARIZE  ("summarize this document", ...)
#       → the stored summary from the File Record Store. No retrieval, no
#         model call. Not completed yet → SummaryUnavailableError.
#
#   Intent.QA  (everything else)
#       → top-k chunks of this document only → chat model with a prompt
#         that restricts it to that context.
#
# The classifier is a closed phrase set rather than a model call, so the
# same question always takes the same path.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import logging
import re
from dataclasses import dataclass, field

from paperchat.db.models import DocumentStatus
from paperchat.errors import SummaryUnavailableError, ValidationError
from paperchat.services.indexer import DEFAULT_TOP_K, VectorIndexer
from paperchat.services.llm import LLMProvider
from paperchat.services.records import FileRecordStore
from paperchat.services.vectorstore import VectorSearchResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Intent Classification
# ---------------------------------------------------------------------------


class Intent(str, enum.Enum):
    SUMMARIZE = "summarize"
    QA = "qa"


SUMMARIZE_PHRASES: tuple[str, ...] = (
    "summarize this document",
    "summarise this document",
    "summarize the document",
    "summarise the document",
    "summarize this paper",
    "summarise this paper",
    "summarize the paper",
    "summarise the paper",
    "summary of this document",
    "summary of the document",
    "summary of this paper",
    "summary of the paper",
)

_WHITESPACE = re.compile(r"\s+")


def classify_intent(question: str) -> Intent:
    """SUMMARIZE if the question contains a summarize phrase, else QA."""
    normalized = _WHITESPACE.sub(" ", question.lower()).strip()
    if any(phrase in normalized for phrase in SUMMARIZE_PHRASES):
        return Intent.SUMMARIZE
    return Intent.QA


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

QA_SYSTEM_PROMPT = (
    "You are a research assistant answering questions about a single "
    "uploaded document. Answer the user's question using ONLY the context "
    "below.\n\n"
    "Rules:\n"
    "- Base your answer exclusively on the provided context\n"
    "- If the answer is not in the context, say that it was not found in "
    "the provided context\n"
    "- Keep your answer concise and directly relevant\n\n"
    "Context:\n{context}"
)


@dataclass
class Answer:
    text: str
    intent: Intent
    sources: list[VectorSearchResult] = field(default_factory=list)
    model: str | None = None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class QAService:
    def __init__(
        self,
        indexer: VectorIndexer,
        records: FileRecordStore,
        llm: LLMProvider,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._indexer = indexer
        self._records = records
        self._llm = llm
        self._top_k = top_k

    async def answer(self, document_id: str | None, question: str | None) -> Answer:
        """
        Answer `question` about `document_id`.

        Raises:
            ValidationError: Missing document id or question.
            NotFoundError: Summarize path, unknown document.
            SummaryUnavailableError: Summarize path, summary not ready.
            RateLimitError, RetrievalError, ChatModelError: QA path.
        """
        if not document_id or not question or not question.strip():
            raise ValidationError("Both documentId and questionText are required")

        intent = classify_intent(question)
        logger.info("Question for document_id=%s routed to %s", document_id, intent.value)

        if intent is Intent.SUMMARIZE:
            return await self._stored_summary(document_id)
        return await self._grounded_answer(document_id, question)

    async def _stored_summary(self, document_id: str) -> Answer:
        record = await asyncio.to_thread(self._records.get, document_id)

        if record.status is not DocumentStatus.COMPLETED or not record.summary:
            logger.info(
                "Summary requested for document_id=%s but status is %s",
                document_id, record.status.value,
            )
            if record.status is DocumentStatus.FAILED:
                raise SummaryUnavailableError(
                    "Summarization failed for this document"
                    + (f": {record.error_message}" if record.error_message else "")
                )
            raise SummaryUnavailableError(
                "The summary is still being generated. Please try again shortly."
            )

        return Answer(text=record.summary, intent=Intent.SUMMARIZE)

    async def _grounded_answer(self, document_id: str, question: str) -> Answer:
        chunks = await self._indexer.search(document_id, question, top_k=self._top_k)
        context = "\n\n".join(chunk.content for chunk in chunks)

        if not chunks:
            logger.info("No chunks matched for document_id=%s", document_id)

        response = await self._llm.complete(
            messages=[{"role": "user", "content": question}],
            system=QA_SYSTEM_PROMPT.format(context=context),
        )
        logger.info(
            "Answered question for document_id=%s from %d chunks (model=%s)",
            document_id, len(chunks), response.model,
        )
        return Answer(
            text=response.content,
            intent=Intent.QA,
            sources=chunks,
            model=response.model,
        )
