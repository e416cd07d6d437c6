# =============================================================================
# Ingestion Orchestrator — Upload → Chunk → Index → Enqueue
# =============================================================================
#
# Runs synchronously inside the upload request (FastAPI runs sync routes in
# its threadpool). When ingest() returns, the document's chunks are
# searchable and the summarization run is queued.
#
# PIPELINE (side effects strictly in this order):
#   1. Validate the upload (non-empty, PDF, size limit)
#   2. Extract text blocks with Docling
#   3. Generate a document id, chunk the text
#   4. Create the File Record           → status "processing"
#   5. Index chunks into the vector store
#   6. Enqueue `document.uploaded`      → summarization workflow
#
# FAILURE HANDLING:
#   Steps 1–3 fail before anything is written.
#   Step 5 or 6 failing marks the record "failed" and re-raises, so a
#   document is never left "processing" with nothing working on it.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

from paperchat.errors import IndexingError, IngestionError, ValidationError
from paperchat.services.chunker import chunk_document, validate_chunk_config
from paperchat.services.indexer import VectorIndexer
from paperchat.services.parser import ParsedDocument
from paperchat.services.records import FileRecordStore
from paperchat.workflows.events import DocumentUploaded

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"
PDF_CONTENT_TYPES = ("application/pdf", "application/x-pdf")


class DocumentParser(Protocol):
    def parse(self, filename: str, data: bytes) -> ParsedDocument:
        ...


class SummaryEnqueuer(Protocol):
    def enqueue(self, event: DocumentUploaded) -> str:
        ...


@dataclass(frozen=True)
class IngestResult:
    document_id: str
    chunk_count: int


class IngestionService:
    """Coordinates chunker, indexer, record store and workflow trigger."""

    def __init__(
        self,
        parser: DocumentParser,
        indexer: VectorIndexer,
        records: FileRecordStore,
        summaries: SummaryEnqueuer,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        max_upload_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        validate_chunk_config(chunk_size, chunk_overlap)
        self._parser = parser
        self._indexer = indexer
        self._records = records
        self._summaries = summaries
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._max_upload_bytes = max_upload_bytes

    @property
    def max_upload_bytes(self) -> int:
        return self._max_upload_bytes

    def validate_upload(
        self,
        file_name: str | None,
        content_type: str | None,
        data: bytes | None,
    ) -> None:
        """
        Raises:
            ValidationError: Missing, empty, oversized, or not a PDF.
        """
        if not file_name:
            raise ValidationError("No file provided")
        if not data:
            raise ValidationError(f"File '{file_name}' is empty")

        is_pdf_name = file_name.lower().endswith(".pdf")
        is_pdf_type = (content_type or "").split(";")[0].strip().lower() in PDF_CONTENT_TYPES
        if not (is_pdf_name or is_pdf_type):
            raise ValidationError(
                f"Only PDF files are supported. Got: {file_name} ({content_type})"
            )
        if not data.startswith(PDF_MAGIC):
            raise ValidationError(f"File '{file_name}' is not a valid PDF")

        if len(data) > self._max_upload_bytes:
            raise ValidationError(
                f"File too large (limit {self._max_upload_bytes} bytes)"
            )

    def ingest(
        self,
        file_name: str | None,
        content_type: str | None,
        data: bytes | None,
    ) -> IngestResult:
        """
        Ingest one uploaded PDF.

        Raises:
            ValidationError: Bad upload, or no extractable text.
            ExtractionError: Docling could not read the PDF.
            IndexingError: Embedding or vector storage failed.
            IngestionError: The summarization run could not be enqueued.
        """
        try:
            self.validate_upload(file_name, content_type, data)
        except ValidationError as exc:
            logger.warning("Rejected upload '%s': %s", file_name, exc.message)
            raise

        file_size = len(data)

        # --- Step 1: Extract text ---
        parsed = self._parser.parse(file_name, data)
        full_text = parsed.full_text
        if not full_text.strip():
            logger.warning("No extractable text in '%s'", file_name)
            raise ValidationError(
                f"No text could be extracted from '{file_name}'. "
                "Scanned PDFs without a text layer are not supported."
            )

        # --- Step 2: Chunk ---
        document_id = str(uuid.uuid4())
        chunks = chunk_document(
            parsed,
            chunk_size=self._chunk_size,
            chunk_overlap=self._chunk_overlap,
        )
        for chunk in chunks:
            chunk.document_id = document_id
        logger.info(
            "[%s] Chunked '%s' into %d chunks (size=%d, overlap=%d)",
            document_id, file_name, len(chunks),
            self._chunk_size, self._chunk_overlap,
        )

        # --- Step 3: Create the record ---
        self._records.create(
            document_id, file_name, file_size, chunk_count=len(chunks),
        )

        # --- Step 4: Index ---
        try:
            self._indexer.index_chunks(document_id, chunks)
        except IndexingError as exc:
            self._records.mark_failed(document_id, exc.message)
            raise

        # --- Step 5: Trigger summarization ---
        event = DocumentUploaded(
            document_id=document_id,
            file_name=file_name,
            file_size=file_size,
            full_text=full_text,
        )
        try:
            self._summaries.enqueue(event)
        except Exception as exc:
            logger.exception("[%s] Failed to enqueue summarization", document_id)
            self._records.mark_failed(
                document_id, f"Could not start summarization: {exc}",
            )
            raise IngestionError(
                "Document was indexed but summarization could not be started"
            ) from exc

        logger.info(
            "[%s] Ingestion complete: '%s', %d bytes, %d chunks",
            document_id, file_name, file_size, len(chunks),
        )
        return IngestResult(document_id=document_id, chunk_count=len(chunks))
