# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - upload.py: POST /pdf-upload
#   - message.py: POST /message (summary or grounded answer)
#   - documents.py: status record, SSE completion stream, operator retry
#   - health.py: GET /health
#   - deps.py: services resolved from the ServiceContainer
# =============================================================================
