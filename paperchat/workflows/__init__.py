# =============================================================================
# Workflows Package — Durable Background Processing
# =============================================================================
#   - events.py: `document.uploaded` trigger payload
#   - engine.py: persisted runs, step markers, retry policy, run lease
#   - summarize.py: summarization steps + enqueue / execute / retry facade
#   - queue.py: Celery and local thread-pool delivery backends
# =============================================================================
