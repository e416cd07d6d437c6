# =============================================================================
# File Record Store — Document Lifecycle Persistence
# =============================================================================
#
# Durable record of every upload and its status:
#
#   create()         → processing          (ingestion, before any indexing)
#   update_summary() → processing → completed
#   mark_failed()    → processing → failed
#   reopen()         → failed → processing (operator retry only)
#
# Every transition is a single conditional UPDATE ... WHERE status = <from>,
# so two writers racing on the same record cannot both win and status never
# moves backwards. Re-applying a transition that already happened is a no-op
# that returns the stored record.
#
# After each committed change the new record is handed to the status
# publishers (see notifier.py). Publishing is best-effort: the write has
# already committed, and watchers re-read the store on their own interval.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from paperchat.db.engine import SessionFactory, session_scope
from paperchat.db.models import Document, DocumentStatus
from paperchat.errors import (
    DuplicateRecordError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Error messages are stored for operators; keep them bounded.
MAX_ERROR_MESSAGE_CHARS = 1000


@dataclass(frozen=True)
class FileRecord:
    """Read-only snapshot of a Document row."""

    document_id: str
    file_name: str
    file_size: int
    status: DocumentStatus
    summary: str | None
    error_message: str | None
    chunk_count: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, doc: Document) -> FileRecord:
        return cls(
            document_id=doc.id,
            file_name=doc.file_name,
            file_size=doc.file_size,
            status=DocumentStatus(doc.status),
            summary=doc.summary,
            error_message=doc.error_message,
            chunk_count=doc.chunk_count,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )

    def to_dict(self) -> dict:
        """JSON-safe dict (used for pub/sub messages and SSE payloads)."""
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("created_at", "updated_at"):
            value = data[key]
            data[key] = value.isoformat() if value is not None else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> FileRecord:
        values = dict(data)
        values["status"] = DocumentStatus(values["status"])
        for key in ("created_at", "updated_at"):
            if values.get(key):
                values[key] = datetime.fromisoformat(values[key])
        return cls(**values)


class StatusPublisher(Protocol):
    """Receives every committed record change."""

    def publish(self, record: FileRecord) -> None:
        ...


class FileRecordStore:
    """SQLAlchemy-backed store for File Records."""

    def __init__(
        self,
        session_factory: SessionFactory,
        publishers: Iterable[StatusPublisher] = (),
    ) -> None:
        self._session_factory = session_factory
        self._publishers: list[StatusPublisher] = list(publishers)

    def add_publisher(self, publisher: StatusPublisher) -> None:
        self._publishers.append(publisher)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, document_id: str) -> FileRecord:
        """
        Raises:
            NotFoundError: No record for document_id.
        """
        with session_scope(self._session_factory) as session:
            doc = session.get(Document, document_id)
            if doc is None:
                raise NotFoundError(f"No document with id '{document_id}'")
            return FileRecord.from_row(doc)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def create(
        self,
        document_id: str,
        file_name: str,
        file_size: int,
        chunk_count: int = 0,
    ) -> FileRecord:
        """
        Insert a new record with status `processing` and no summary.

        Raises:
            DuplicateRecordError: A record with this id already exists.
        """
        if not document_id:
            raise ValidationError("document_id is required")

        try:
            with session_scope(self._session_factory) as session:
                doc = Document(
                    id=document_id,
                    file_name=file_name,
                    file_size=file_size,
                    status=DocumentStatus.PROCESSING,
                    summary=None,
                    chunk_count=chunk_count,
                )
                session.add(doc)
                session.flush()
                session.refresh(doc)
                record = FileRecord.from_row(doc)
        except IntegrityError as exc:
            logger.warning("Duplicate file record: %s", document_id)
            raise DuplicateRecordError(
                f"Document '{document_id}' already exists"
            ) from exc

        logger.info(
            "Created file record %s (%s, %d bytes, status=processing)",
            document_id, file_name, file_size,
        )
        self._publish(record)
        return record

    def ensure(self, document_id: str, file_name: str, file_size: int) -> FileRecord:
        """Idempotent create: returns the existing record if there is one."""
        try:
            return self.create(document_id, file_name, file_size)
        except DuplicateRecordError:
            return self.get(document_id)

    def update_summary(self, document_id: str, summary: str) -> FileRecord:
        """
        Store the summary and move the record to `completed`.

        Re-applying on a completed record is a no-op. If the stored summary
        differs, the stored one is kept (first commit wins).

        Raises:
            NotFoundError: No record for document_id.
            InvalidTransitionError: The record is `failed`.
        """
        record, changed = self._transition(
            document_id,
            from_status=DocumentStatus.PROCESSING,
            values={
                "status": DocumentStatus.COMPLETED,
                "summary": summary,
                "error_message": None,
            },
        )
        if changed:
            logger.info("File record %s completed with summary", document_id)
            return record

        if record.status is DocumentStatus.COMPLETED:
            if record.summary != summary:
                logger.warning(
                    "Ignoring diverging summary for completed document %s",
                    document_id,
                )
            return record

        raise InvalidTransitionError(
            f"Document '{document_id}' is {record.status.value}; "
            "cannot store a summary"
        )

    def mark_failed(self, document_id: str, error_message: str) -> FileRecord:
        """
        Move a `processing` record to `failed`. No-op on terminal records.

        Raises:
            NotFoundError: No record for document_id.
        """
        record, changed = self._transition(
            document_id,
            from_status=DocumentStatus.PROCESSING,
            values={
                "status": DocumentStatus.FAILED,
                "error_message": error_message[:MAX_ERROR_MESSAGE_CHARS],
            },
        )
        if changed:
            logger.warning(
                "File record %s marked failed: %s", document_id, error_message,
            )
        return record

    def reopen(self, document_id: str) -> FileRecord:
        """
        Move a `failed` record back to `processing` for an operator retry.

        Raises:
            NotFoundError: No record for document_id.
            InvalidTransitionError: The record is `completed`.
        """
        record, changed = self._transition(
            document_id,
            from_status=DocumentStatus.FAILED,
            values={"status": DocumentStatus.PROCESSING, "error_message": None},
        )
        if changed:
            logger.info("File record %s reopened for retry", document_id)
            return record

        if record.status is DocumentStatus.COMPLETED:
            raise InvalidTransitionError(
                f"Document '{document_id}' is already completed"
            )
        return record

    # -----------------------------------------------------------------------
    # Internal Helpers
    # -----------------------------------------------------------------------

    def _transition(
        self,
        document_id: str,
        from_status: DocumentStatus,
        values: dict,
    ) -> tuple[FileRecord, bool]:
        """
        Apply `values` only if the record is currently `from_status`.

        Returns:
            (current record, whether this call changed it)
        """
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(Document)
                .where(Document.id == document_id, Document.status == from_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1

            doc = session.scalars(
                select(Document).where(Document.id == document_id)
            ).one_or_none()
            if doc is None:
                raise NotFoundError(f"No document with id '{document_id}'")
            record = FileRecord.from_row(doc)

        if changed:
            self._publish(record)
        return record, changed

    def _publish(self, record: FileRecord) -> None:
        for publisher in self._publishers:
            try:
                publisher.publish(record)
            except Exception:
                logger.exception(
                    "Status publish failed for document %s (status=%s)",
                    record.document_id, record.status.value,
                )
