# =============================================================================
# Pydantic Models Package — API Request/Response Schemas
# =============================================================================
# Separate from SQLAlchemy ORM models (in db/models.py).
#   - requests.py: Incoming request body schemas
#   - responses.py: Outgoing response schemas (camelCase on the wire)
# =============================================================================
