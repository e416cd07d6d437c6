# =============================================================================
# Paper Chat
# =============================================================================
# Upload a PDF, ask questions about it with retrieval-augmented generation,
# and get a summary generated in the background once ingestion is done.
#
# Package structure:
#   paperchat/
#   ├── api/          → FastAPI route handlers (upload, message, documents)
#   ├── db/           → Database engine, session scope, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Parsing, chunking, embedding, vector index, record
#   │                    store, ingestion, QA, completion notifier
#   ├── workflows/    → Durable step engine + the summarization workflow
#   └── workers/      → Celery app and the workflow task
# =============================================================================

__version__ = "0.1.0"
