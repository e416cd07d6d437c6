# =============================================================================
# Vector Store Abstraction — Pluggable Backend Protocol
# =============================================================================
#
# Common interface for storing embedding records and running similarity
# search restricted to one document.
#
# Both methods are synchronous. Async callers (the QA service) go through
# VectorIndexer.search(), which runs them on a worker thread.
#
# ARCHITECTURE:
#   VectorStore (Protocol)
#   ├── PgVectorStore     — PostgreSQL + pgvector extension
#   └── ChromaVectorStore — ChromaDB (in-process or client/server)
#
# Record ids are "{document_id}:{chunk_index}" in both backends, so writing
# the same document twice is an upsert, never a duplicate.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import chromadb
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from paperchat.db.engine import SessionFactory, session_scope
from paperchat.db.models import Chunk

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class VectorSearchResult:
    """A single result from vector similarity search."""

    chunk_id: str
    document_id: str
    content: str
    page_number: int | None
    similarity_score: float  # cosine similarity, higher = more relevant
    metadata: dict = field(default_factory=dict)


def record_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}:{chunk_index}"


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorStore(Protocol):
    """Vector store interface shared by the pgvector and Chroma backends."""

    def add_chunks(
        self,
        document_id: str,
        contents: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict],
    ) -> list[str]:
        """
        Store chunks with their embeddings, each tagged with document_id.

        Returns:
            The record ids written.
        """
        ...

    def search(
        self,
        query_embedding: list[float],
        document_id: str,
        top_k: int = 4,
    ) -> list[VectorSearchResult]:
        """
        Return the top_k chunks of `document_id` nearest to the query,
        sorted by similarity (highest first). Never returns other documents.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: pgvector (PostgreSQL)
# ---------------------------------------------------------------------------


class PgVectorStore:
    """
    pgvector-backed vector store.

    Writes use INSERT ... ON CONFLICT DO NOTHING: chunks are immutable, so a
    replayed ingestion leaves existing rows untouched. Reads order by
    cosine_distance() and convert to similarity as 1 - distance.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def add_chunks(
        self,
        document_id: str,
        contents: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict],
    ) -> list[str]:
        rows = []
        for i, (content, embedding, meta) in enumerate(
            zip(contents, embeddings, metadatas, strict=True)
        ):
            chunk_index = meta.get("chunk_index", i)
            rows.append({
                "id": record_id(document_id, chunk_index),
                "document_id": document_id,
                "chunk_index": chunk_index,
                "start_offset": meta.get("start_offset", 0),
                "content": content,
                "page_number": meta.get("page_number"),
                "token_count": meta.get("token_count", 0),
                "embedding": embedding,
                "metadata_": meta,
            })

        if rows:
            with session_scope(self._session_factory) as session:
                stmt = pg_insert(Chunk).values(rows).on_conflict_do_nothing(
                    index_elements=[Chunk.id],
                )
                session.execute(stmt)

        logger.info(
            "Stored %d chunks for document_id=%s in pgvector",
            len(rows), document_id,
        )
        return [row["id"] for row in rows]

    def search(
        self,
        query_embedding: list[float],
        document_id: str,
        top_k: int = 4,
    ) -> list[VectorSearchResult]:
        distance = Chunk.embedding.cosine_distance(query_embedding)
        stmt = (
            select(Chunk, distance.label("distance"))
            .where(Chunk.document_id == document_id)
            .order_by(distance)
            .limit(top_k)
        )

        with session_scope(self._session_factory) as session:
            rows = session.execute(stmt).all()

        logger.debug(
            "pgvector search returned %d rows (top_k=%d, doc_id=%s)",
            len(rows), top_k, document_id,
        )
        return [
            VectorSearchResult(
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                content=chunk.content,
                page_number=chunk.page_number,
                similarity_score=round(1.0 - dist, 4),
                metadata=chunk.metadata_ or {},
            )
            for chunk, dist in rows
        ]


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorStore:
    """
    ChromaDB-backed vector store.

    One collection for all documents; scoping uses a `document_id` metadata
    `where` clause. Cosine space, to match pgvector.

    - In-process (default): no extra infra, data held by the local client
    - Client/server: pass `url` (CHROMA_URL) for a Docker deployment
    """

    def __init__(
        self,
        collection_name: str = "paper_chunks",
        url: str | None = None,
        client: chromadb.ClientAPI | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif url:
            self._client = chromadb.HttpClient(host=url)
        else:
            self._client = chromadb.Client()

        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def add_chunks(
        self,
        document_id: str,
        contents: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict],
    ) -> list[str]:
        ids = [
            record_id(document_id, meta.get("chunk_index", i))
            for i, meta in enumerate(metadatas)
        ]
        sanitised_metadatas = [
            _sanitise_chroma_metadata({**meta, "document_id": document_id})
            for meta in metadatas
        ]

        if ids:
            self._collection.upsert(
                ids=ids,
                documents=contents,
                embeddings=embeddings,
                metadatas=sanitised_metadatas,
            )

        logger.info(
            "Stored %d chunks for document_id=%s in ChromaDB",
            len(ids), document_id,
        )
        return ids

    def search(
        self,
        query_embedding: list[float],
        document_id: str,
        top_k: int = 4,
    ) -> list[VectorSearchResult]:
        results = self._collection.query(
            query_embeddings=[query_embedding],
            n_results=top_k,
            where={"document_id": document_id},
            include=["documents", "metadatas", "distances"],
        )

        search_results: list[VectorSearchResult] = []
        if not results or not results["ids"] or not results["ids"][0]:
            return search_results

        for i, chroma_id in enumerate(results["ids"][0]):
            distance = results["distances"][0][i] if results["distances"] else 0.0
            metadata = results["metadatas"][0][i] if results["metadatas"] else {}
            content = results["documents"][0][i] if results["documents"] else ""
            page_number = metadata.get("page_number")

            search_results.append(VectorSearchResult(
                chunk_id=chroma_id,
                document_id=str(metadata.get("document_id", document_id)),
                content=content,
                page_number=page_number if isinstance(page_number, int) else None,
                similarity_score=round(1.0 - distance, 4),
                metadata=dict(metadata),
            ))

        # Chroma returns nearest first already; keep the contract explicit
        search_results.sort(key=lambda r: r.similarity_score, reverse=True)
        return search_results


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    ChromaDB metadata values must be str, int, float, or bool:
    - list → comma-separated string
    - None → dropped
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
