# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API. All of them
# serialize with camelCase keys (FastAPI dumps response_model by alias).
#
# Separate from the ORM models: chunk embeddings and workflow internals are
# never sent to the client.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from paperchat.services.records import FileRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(_CamelModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class UploadResponse(_CamelModel):
    """
    Response for POST /pdf-upload.

    Chunks are already searchable when this is returned; the summary is
    generated in the background (watch GET /documents/{id}/events).
    """

    document_id: str = Field(description="Id of the created document record")
    chunk_count: int = Field(description="Number of chunks indexed")
    message: str = Field(
        default="Document indexed. Summary is being generated.",
        description="Human-readable status message",
    )


class MessageResponse(_CamelModel):
    """Response for POST /message."""

    answer: str


class DocumentResponse(_CamelModel):
    """Response for GET /documents/{id} and the retry endpoint."""

    document_id: str
    file_name: str
    file_size: int
    status: str
    summary: str | None = None
    error_message: str | None = None
    chunk_count: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: FileRecord) -> "DocumentResponse":
        return cls(
            document_id=record.document_id,
            file_name=record.file_name,
            file_size=record.file_size,
            status=record.status.value,
            summary=record.summary,
            error_message=record.error_message,
            chunk_count=record.chunk_count,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
    details: str
