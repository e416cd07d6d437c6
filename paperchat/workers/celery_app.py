# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery executes the summarization workflow out of the request path:
#   Upload → (API) chunk + index → enqueue → (worker) summarize → persist
#
# ARCHITECTURE:
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌──────────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│────▶│ Postgres │
# │(producer)│     │(broker)│    │  (consumer)  │     │(runs, docs)│
# └──────────┘     └───────┘     └──────────────┘     └──────────┘
#    db 0 ──────────┘                   │
#                                       └──▶ Redis db 2 (status pub/sub)
#
# The source of truth for a run is its workflow_runs row, not the Celery
# result. Celery delivers at-least-once (acks_late + reject_on_worker_lost);
# the workflow engine turns redelivery into a no-op or a resume.
#
# Start a worker with:
#   celery -A paperchat.workers.celery_app worker --loglevel=info
# =============================================================================

from celery import Celery

from paperchat.config import get_settings

settings = get_settings()

celery_app = Celery(
    "paperchat.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only; the trigger payload is plain data.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Acknowledge after the task finishes, and re-queue if the worker dies,
    # so a crash mid-run leads to a redelivery that resumes the run.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # One task at a time per worker process; summaries are slow model calls.
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # The soft limit must stay below WORKFLOW_LEASE_SECONDS so a stuck run is
    # killed before another worker can reclaim it.
    task_soft_time_limit=300,
    task_time_limit=540,

    # --- Results ---
    result_expires=3600,

    include=["paperchat.workers.tasks"],
)
