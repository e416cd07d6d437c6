# =============================================================================
# Database Package
# =============================================================================
# Key exports:
#   - engine.create_db_engine / create_session_factory / session_scope
#   - models.Document, Chunk, WorkflowRun: ORM models
# =============================================================================
