# =============================================================================
# Workflow Trigger Events
# =============================================================================
#
# `document.uploaded` is emitted by the ingestion orchestrator once a
# document's chunks are indexed, and consumed only by the summarization
# workflow. On the wire (Celery JSON payload, workflow_runs.payload) it uses
# camelCase keys:
#
#   {"documentId": ..., "fileName": ..., "fileSize": ..., "fullText": ...}
# =============================================================================

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DocumentUploaded(BaseModel):
    """Trigger for the summarization workflow."""

    EVENT_NAME: ClassVar[str] = "document.uploaded"

    document_id: str = Field(min_length=1)
    file_name: str
    file_size: int = Field(ge=0)
    full_text: str

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_payload(cls, payload: dict) -> "DocumentUploaded":
        return cls.model_validate(payload)
