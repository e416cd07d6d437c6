# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - parser.py: PDF text extraction with Docling (page-aware blocks)
#   - chunker.py: Character sliding-window chunking with overlap
#   - embedder.py: OpenAI embedding generation (batch processing)
#   - vectorstore.py: Pluggable vector store protocol (pgvector, Chroma)
#   - indexer.py: Embed + store, document-scoped search
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - records.py: File Record Store (document lifecycle)
#   - ingestion.py: Upload → chunk → index → enqueue orchestration
#   - qa.py: Intent routing, stored summaries, grounded answers
#   - notifier.py: Status feeds and completion subscriptions
# =============================================================================
