# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────┐       ┌──────────────────────────────────┐
# │  documents       │       │  chunks  (pgvector backend only) │
# ├──────────────────┤       ├──────────────────────────────────┤
# │ id (PK, uuid)    │──1:N─▶│ id (PK, "{document_id}:{index}") │
# │ file_name        │       │ document_id (indexed)            │
# │ file_size        │       │ chunk_index / start_offset       │
# │ status           │       │ content / page_number            │
# │ summary          │       │ token_count                      │
# │ error_message    │       │ embedding (vector(1536))         │
# │ chunk_count      │       │ metadata_ (jsonb)                │
# │ created_at       │       └──────────────────────────────────┘
# │ updated_at       │
# └──────────────────┘       ┌──────────────────────────────────┐
#          │                 │  workflow_runs                   │
#          └──────────1:1───▶├──────────────────────────────────┤
#                            │ id (PK, "summarize:{doc_id}")    │
#                            │ document_id (unique)             │
#                            │ state / attempts                 │
#                            │ payload (json)                   │
#                            │ step_results (json)              │
#                            │ lease_expires_at                 │
#                            │ error_message                    │
#                            └──────────────────────────────────┘
#
# Document.status is monotonic: processing → completed, or processing →
# failed. The only way back from failed is an explicit operator retry.
#
# chunks.document_id carries no foreign key: embedding records can be written
# by the Chroma backend instead, and the scoping key must mean the same thing
# in both backends.
# =============================================================================

import enum
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

EMBEDDING_DIMENSIONS = 1536

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class DocumentStatus(str, enum.Enum):
    """
    Lifecycle of an uploaded document.

        PROCESSING → COMPLETED
                   → FAILED
    """

    PROCESSING = "processing"    # Record created; indexing / summarizing
    COMPLETED = "completed"      # Summary stored
    FAILED = "failed"            # Indexing or summarization failed for good

    @property
    def is_terminal(self) -> bool:
        return self is not DocumentStatus.PROCESSING


class WorkflowState(str, enum.Enum):
    """
    Lifecycle of a workflow run.

        PENDING → SUMMARIZING → PERSISTED
                              → FAILED
    """

    PENDING = "pending"
    SUMMARIZING = "summarizing"
    PERSISTED = "persisted"
    FAILED = "failed"


class Document(Base):
    """
    The File Record: one row per accepted upload.

    Created before any chunk is written so a status query never misses a
    document that is mid-ingestion. Only the summarization workflow moves it
    out of `processing`.
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(
            DocumentStatus,
            name="document_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=DocumentStatus.PROCESSING,
    )
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Document(id={self.id}, file_name='{self.file_name}', "
            f"status={self.status})>"
        )


class Chunk(Base):
    """
    An embedding record: chunk text + vector + metadata, scoped by document.

    Used by the pgvector backend only. The primary key is derived from the
    document id and chunk index, so re-indexing a document is an upsert.
    """

    __tablename__ = "chunks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document_id: Mapped[str] = mapped_column(String(36), nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    page_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # 1536 dimensions = text-embedding-3-small. Changing EMBEDDING_DIMENSIONS
    # requires re-creating the table.
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS),
        nullable=False,
    )

    # Named `metadata_` to avoid colliding with DeclarativeBase.metadata
    metadata_: Mapped[dict | None] = mapped_column(
        JSONB,
        nullable=True,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, doc_id={self.document_id}, "
            f"index={self.chunk_index})>"
        )


class WorkflowRun(Base):
    """
    Durable state of one summarization run.

    `step_results` maps step name → the JSON result committed by that step.
    A step found here is never executed again, which is what makes replays
    after a crash or a duplicate delivery safe.
    """

    __tablename__ = "workflow_runs"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    workflow: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)

    state: Mapped[WorkflowState] = mapped_column(
        Enum(
            WorkflowState,
            name="workflow_state",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=WorkflowState.PENDING,
    )
    payload: Mapped[dict] = mapped_column(JsonType, nullable=False)
    step_results: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<WorkflowRun(id={self.id}, state={self.state})>"


# =============================================================================
# Indexes
# =============================================================================
# HNSW index with cosine ops: matches the cosine_distance() ordering used by
# PgVectorStore.search(). The B-tree on document_id serves the scoping filter.
# =============================================================================

chunk_embedding_idx = Index(
    "idx_chunk_embedding_hnsw",
    Chunk.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

chunk_document_idx = Index(
    "idx_chunk_document_id",
    Chunk.document_id,
)
