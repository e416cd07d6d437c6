# =============================================================================
# Error Taxonomy
# =============================================================================
#
# Every failure the service can surface is one of these classes. Each carries
# the HTTP status it maps to and a short user-facing title; the FastAPI
# exception handler in main.py turns them into
#   {"error": <title>, "details": <message>}
#
#   PaperChatError
#   ├── ValidationError (400)
#   │   └── InvalidChunkConfigError
#   ├── NotFoundError (404)
#   ├── SummaryUnavailableError (404)
#   ├── DuplicateRecordError (409)
#   ├── InvalidTransitionError (409)
#   ├── RateLimitError (429)               [transient]
#   ├── IngestionError (500)
#   │   └── ExtractionError
#   ├── IndexingError (500)
#   ├── RetrievalError (500)
#   ├── WorkflowStepError (500)
#   └── ChatModelError (502)
#       └── ChatModelUnavailableError      [transient]
#
# "Transient" errors are the only ones the workflow retry policy retries.
# =============================================================================

from __future__ import annotations


class PaperChatError(Exception):
    """Base class for all service errors."""

    status_code: int = 500
    title: str = "Internal error"
    transient: bool = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.title)
        self.message = message or self.title


# ---------------------------------------------------------------------------
# 4xx — caller errors and record consistency violations
# ---------------------------------------------------------------------------


class ValidationError(PaperChatError):
    """Bad input. Never retried."""

    status_code = 400
    title = "Invalid request"


class InvalidChunkConfigError(ValidationError):
    title = "Invalid chunking configuration"


class NotFoundError(PaperChatError):
    status_code = 404
    title = "Document not found"


class SummaryUnavailableError(PaperChatError):
    status_code = 404
    title = "Summary not available yet"


class DuplicateRecordError(PaperChatError):
    status_code = 409
    title = "Document already exists"


class InvalidTransitionError(PaperChatError):
    status_code = 409
    title = "Invalid status transition"


class RateLimitError(PaperChatError):
    """Upstream provider quota exhausted (HTTP 429 from the model/embedding API)."""

    status_code = 429
    title = "API rate limit exceeded"
    transient = True

    def __init__(
        self,
        message: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(
            message
            or "Please wait a moment and try again. "
            "Consider upgrading your API plan for higher limits."
        )
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# 5xx — pipeline failures
# ---------------------------------------------------------------------------


class IngestionError(PaperChatError):
    title = "Ingestion failed"


class ExtractionError(IngestionError):
    title = "Text extraction failed"


class IndexingError(PaperChatError):
    title = "Indexing failed"


class RetrievalError(PaperChatError):
    title = "Database error"


class WorkflowStepError(PaperChatError):
    """A workflow step failed permanently or ran out of retries."""

    title = "Workflow step failed"

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"Step '{step}' failed: {message}")
        self.step = step


class ChatModelError(PaperChatError):
    status_code = 502
    title = "LLM service error"


class ChatModelUnavailableError(ChatModelError):
    """Connection failure, timeout, or 5xx from the model provider."""

    transient = True
