# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Everything runs in-process: in-memory SQLite for the record and workflow
# run stores, in-process ChromaDB for vectors, a hash-based fake embedder and
# an AsyncMock chat model. No API keys, databases, or network services; the
# tiktoken encoder is replaced so its BPE file is never fetched.
# =============================================================================

from __future__ import annotations

import hashlib
import uuid
from unittest.mock import AsyncMock

import pytest

from paperchat.db.engine import create_db_engine, create_session_factory, init_schema
from paperchat.db.models import Document, WorkflowRun
from paperchat.services import chunker
from paperchat.services.llm import LLMResponse
from paperchat.services.records import FileRecordStore
from paperchat.services.vectorstore import ChromaVectorStore

EMBEDDING_DIM = 8


class FakeEmbedder:
    """Deterministic embeddings derived from a hash of the text."""

    def __init__(self) -> None:
        self.document_calls: list[list[str]] = []
        self.query_calls: list[str] = []

    @staticmethod
    def vector(text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[:EMBEDDING_DIM]]

    def embed_documents(self, texts):
        self.document_calls.append(list(texts))
        return [self.vector(t) for t in texts]

    def embed_query(self, text):
        self.query_calls.append(text)
        return self.vector(text)


class WhitespaceEncoder:
    """Stands in for tiktoken's cl100k_base so no BPE file is downloaded."""

    def encode(self, text: str, disallowed_special=()) -> list[str]:
        return text.split()


@pytest.fixture(autouse=True)
def offline_token_encoder(monkeypatch):
    monkeypatch.setattr(chunker, "_encoder", WhitespaceEncoder())


def make_llm(content: str = "A generated answer.") -> AsyncMock:
    llm = AsyncMock()
    llm.complete.return_value = LLMResponse(
        content=content,
        model="test-model",
        input_tokens=100,
        output_tokens=20,
    )
    return llm


@pytest.fixture
def session_factory():
    # The chunks table needs pgvector/JSONB; SQLite gets the other two.
    engine = create_db_engine("sqlite://")
    init_schema(engine, tables=[Document.__table__, WorkflowRun.__table__])
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def records(session_factory) -> FileRecordStore:
    return FileRecordStore(session_factory)


@pytest.fixture
def chroma_store() -> ChromaVectorStore:
    # The in-process Chroma client is shared per process; isolate by name.
    return ChromaVectorStore(collection_name=f"test_{uuid.uuid4().hex}")


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> AsyncMock:
    """Chat model answering "A generated answer." unless reconfigured."""
    return make_llm()
