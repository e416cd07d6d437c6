# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Request bodies use camelCase on the wire (documentId, questionText);
# Python code uses snake_case. populate_by_name lets tests and internal
# callers use either.
#
# Fields are optional at the schema level so that a missing field reaches
# the service and comes back as a 400 with the standard error body, not a
# framework-shaped 422.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MessageRequest(BaseModel):
    """
    Request body for POST /message.

    Example:
        {
            "documentId": "3f0c2b1e-9a0d-4c59-8d55-0a3f6a1b7c2d",
            "questionText": "What dataset do the authors evaluate on?"
        }
    """

    document_id: str | None = Field(
        default=None,
        description="Id returned by POST /pdf-upload",
    )
    question_text: str | None = Field(
        default=None,
        max_length=4000,
        description=(
            "Question about the document. 'Summarize this document' returns "
            "the stored summary."
        ),
        examples=["What is the main contribution of this paper?"],
    )

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
