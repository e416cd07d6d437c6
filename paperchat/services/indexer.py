# =============================================================================
# Vector Indexer — Embed + Store, Scoped Search
# =============================================================================
#
# Combines the embedder and the vector store into the two operations the
# rest of the service needs:
#
#   index_chunks(document_id, chunks)  — ingestion (sync, request thread)
#   search(document_id, query, top_k)  — question answering (async)
#
# Every stored record carries document_id, and search always filters on it.
# Failures are translated into IndexingError / RetrievalError here so callers
# never see SDK or driver exceptions.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from paperchat.errors import IndexingError, RateLimitError, RetrievalError
from paperchat.services.chunker import ChunkResult
from paperchat.services.embedder import Embedder
from paperchat.services.vectorstore import VectorSearchResult, VectorStore

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 4


class VectorIndexer:
    """Embeds chunks into, and searches, a document-scoped vector store."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        default_top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._default_top_k = default_top_k

    def index_chunks(self, document_id: str, chunks: Sequence[ChunkResult]) -> int:
        """
        Embed `chunks` and persist them tagged with `document_id`.

        Returns:
            Number of embedding records written.

        Raises:
            IndexingError: The embedder or the vector store failed. The
                caller must not report the document as indexed.
        """
        if not chunks:
            logger.warning("No chunks to index for document_id=%s", document_id)
            return 0

        texts = [c.content for c in chunks]
        metadatas = [
            {
                **c.metadata,
                "document_id": document_id,
                "chunk_index": c.chunk_index,
                "start_offset": c.start_offset,
                "page_number": c.page_number,
                "token_count": c.token_count,
            }
            for c in chunks
        ]

        try:
            embeddings = self._embedder.embed_documents(texts)
            record_ids = self._store.add_chunks(
                document_id=document_id,
                contents=texts,
                embeddings=embeddings,
                metadatas=metadatas,
            )
        except Exception as exc:
            logger.exception(
                "Indexing failed for document_id=%s (%d chunks)",
                document_id, len(chunks),
            )
            raise IndexingError(
                f"Could not index document {document_id}: {exc}"
            ) from exc

        logger.info(
            "Indexed %d chunks for document_id=%s", len(record_ids), document_id,
        )
        return len(record_ids)

    async def search(
        self,
        document_id: str,
        query_text: str,
        top_k: int | None = None,
    ) -> list[VectorSearchResult]:
        """
        Nearest chunks of `document_id` to `query_text`, most similar first.

        An empty result is not an error.

        Raises:
            RateLimitError: The embedding provider answered 429.
            RetrievalError: The embedder or the vector store is unreachable.
        """
        k = top_k or self._default_top_k

        try:
            query_embedding = await asyncio.to_thread(
                self._embedder.embed_query, query_text,
            )
            results = await asyncio.to_thread(
                self._store.search, query_embedding, document_id, k,
            )
        except RateLimitError:
            raise
        except Exception as exc:
            logger.exception("Vector search failed for document_id=%s", document_id)
            raise RetrievalError(
                "Failed to search documents. Please try again."
            ) from exc

        logger.debug(
            "Search for document_id=%s returned %d chunks", document_id, len(results),
        )
        return results
