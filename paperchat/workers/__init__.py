# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: summarize_document (one delivery of `document.uploaded`)
#
# Summaries take a chat-model round trip over up to 30k characters. Running
# them in the upload request would hold the client for the whole call, so the
# upload returns as soon as the chunks are indexed and the run is queued.
# =============================================================================
