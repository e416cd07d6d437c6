# =============================================================================
# API Tests — FastAPI TestClient
# =============================================================================
#
# The app runs on a real ServiceContainer (SQLite records and runs, Chroma
# vectors, fake embedder, mocked parser and chat model). The workflow queue is
# a MagicMock: tests pick the submitted payload off it and execute the run
# themselves, standing in for the Celery worker.
# =============================================================================

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from paperchat.config import Settings
from paperchat.dependencies import build_container
from paperchat.errors import ChatModelError, RateLimitError
from paperchat.main import create_app
from paperchat.services.parser import ParsedDocument

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\n%%EOF\n"

PAPER_TEXT = [
    "Attention Is All You Need",
    "The Transformer relies entirely on self-attention with 8 heads. " * 8,
    "On WMT 2014 English-to-German it reaches 28.4 BLEU. " * 8,
]


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _make_env(session_factory, embedder, chroma_store, llm, **overrides):
    settings = Settings(
        database_url="sqlite://",
        create_schema=False,
        status_feed_type="polling",
        status_poll_interval=0.01,
        chunk_size=300,
        chunk_overlap=50,
        **overrides,
    )
    parser = MagicMock()
    parser.parse.return_value = ParsedDocument.from_texts(PAPER_TEXT, filename="paper.pdf")
    queue = MagicMock()

    container = build_container(
        settings,
        session_factory=session_factory,
        embedder=embedder,
        vector_store=chroma_store,
        llm=llm,
        parser=parser,
        queue=queue,
    )
    app = create_app(container=container)
    client = TestClient(app)
    return SimpleNamespace(
        app=app, client=client, container=container, queue=queue, llm=llm, parser=parser,
    )


@pytest.fixture
def env(session_factory, embedder, chroma_store, llm):
    return _make_env(session_factory, embedder, chroma_store, llm)


def _upload(client, name="paper.pdf", data=PDF_BYTES, content_type="application/pdf"):
    return client.post("/pdf-upload", files={"file": (name, data, content_type)})


def _run_submitted_workflow(env) -> None:
    """Execute the most recently submitted run, as the worker would."""
    payload = env.queue.submit.call_args.args[1]
    _run(env.container.summaries.execute(payload))


def _ask(client, document_id, question):
    return client.post(
        "/message", json={"documentId": document_id, "questionText": question},
    )


# ---------------------------------------------------------------------------
# Test: Health & Upload
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, env):
        response = env.client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "0.1.0", "service": "Paper Chat"}


class TestUpload:
    def test_upload_returns_document_id(self, env):
        response = _upload(env.client)

        assert response.status_code == 200
        body = response.json()
        assert body["documentId"]
        assert body["chunkCount"] > 1

        run_id, payload = env.queue.submit.call_args.args
        assert run_id == f"summarize:{body['documentId']}"
        assert payload["documentId"] == body["documentId"]
        assert payload["fileName"] == "paper.pdf"

    def test_missing_file_is_400(self, env):
        response = env.client.post("/pdf-upload")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"
        env.queue.submit.assert_not_called()

    def test_non_pdf_is_400(self, env):
        response = _upload(env.client, name="notes.txt", data=b"plain text", content_type="text/plain")
        assert response.status_code == 400
        assert set(response.json()) == {"error", "details"}

    def test_oversized_upload_rejected_before_parsing(self, session_factory, embedder, chroma_store, llm):
        env = _make_env(session_factory, embedder, chroma_store, llm, max_upload_bytes=1024)
        data = PDF_BYTES + b"0" * 4096

        response = _upload(env.client, data=data)

        assert response.status_code == 400
        assert "too large" in response.json()["details"]
        env.parser.parse.assert_not_called()
        env.queue.submit.assert_not_called()

    def test_document_starts_processing(self, env):
        document_id = _upload(env.client).json()["documentId"]

        response = env.client.get(f"/documents/{document_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "processing"
        assert body["summary"] is None
        assert body["fileName"] == "paper.pdf"

    def test_unknown_document_is_404(self, env):
        response = env.client.get("/documents/does-not-exist")
        assert response.status_code == 404
        assert response.json()["error"] == "Document not found"


# ---------------------------------------------------------------------------
# Test: Message
# ---------------------------------------------------------------------------


class TestMessage:
    def test_summary_before_completion_is_404(self, env):
        document_id = _upload(env.client).json()["documentId"]

        response = _ask(env.client, document_id, "Summarize this document")

        assert response.status_code == 404
        assert response.json()["error"] == "Summary not available yet"

    def test_full_flow_summary_then_question(self, env):
        document_id = _upload(env.client).json()["documentId"]
        env.llm.complete.return_value.content = "Paragraph one.\n\nTwo.\n\nThree."
        _run_submitted_workflow(env)

        document = env.client.get(f"/documents/{document_id}").json()
        assert document["status"] == "completed"
        assert document["summary"] == "Paragraph one.\n\nTwo.\n\nThree."

        summary = _ask(env.client, document_id, "Please summarize this document")
        assert summary.status_code == 200
        assert summary.json() == {"answer": "Paragraph one.\n\nTwo.\n\nThree."}

        calls_before = env.llm.complete.await_count
        answer = _ask(env.client, document_id, "How many attention heads?")
        assert answer.status_code == 200
        assert env.llm.complete.await_count == calls_before + 1
        assert "self-attention" in env.llm.complete.call_args.kwargs["system"]

    @pytest.mark.parametrize(
        "body",
        [{}, {"documentId": "abc"}, {"questionText": "What?"}, {"documentId": "", "questionText": "What?"}],
    )
    def test_missing_fields_are_400(self, env, body):
        response = env.client.post("/message", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_malformed_body_is_400(self, env):
        response = env.client.post("/message", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_rate_limit_is_429(self, env):
        document_id = _upload(env.client).json()["documentId"]
        env.llm.complete.side_effect = RateLimitError(retry_after=7)

        response = _ask(env.client, document_id, "What is the BLEU score?")

        assert response.status_code == 429
        assert response.json()["error"] == "API rate limit exceeded"
        assert response.headers["Retry-After"] == "7"


# ---------------------------------------------------------------------------
# Test: Completion events & operator retry
# ---------------------------------------------------------------------------


class TestDocumentEvents:
    def test_stream_ends_with_completed_event(self, env):
        document_id = _upload(env.client).json()["documentId"]
        _run_submitted_workflow(env)

        response = env.client.get(f"/documents/{document_id}/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "event: status" in response.text
        assert '"status": "completed"' in response.text


class TestSummaryRetry:
    def test_failed_summary_can_be_retried(self, env):
        document_id = _upload(env.client).json()["documentId"]
        env.llm.complete.side_effect = ChatModelError("context length exceeded")
        _run_submitted_workflow(env)
        assert env.client.get(f"/documents/{document_id}").json()["status"] == "failed"

        env.queue.submit.reset_mock()
        response = env.client.post(f"/documents/{document_id}/summary/retry")

        assert response.status_code == 202
        assert response.json()["status"] == "processing"
        assert env.queue.submit.call_args.args[0] == f"summarize:{document_id}"

        env.llm.complete.side_effect = None
        _run_submitted_workflow(env)
        assert env.client.get(f"/documents/{document_id}").json()["status"] == "completed"

    def test_retry_unknown_document_is_404(self, env):
        response = env.client.post("/documents/unknown/summary/retry")
        assert response.status_code == 404

    def test_retry_completed_document_is_409(self, env):
        document_id = _upload(env.client).json()["documentId"]
        _run_submitted_workflow(env)

        response = env.client.post(f"/documents/{document_id}/summary/retry")

        assert response.status_code == 409


# ---------------------------------------------------------------------------
# Test: Startup
# ---------------------------------------------------------------------------


class TestStartupResume:
    def test_local_backend_resubmits_unfinished_runs(self, session_factory, embedder, chroma_store, llm):
        env = _make_env(session_factory, embedder, chroma_store, llm, workflow_backend="local")
        document_id = _upload(env.client).json()["documentId"]
        env.queue.submit.reset_mock()

        with TestClient(env.app):
            pass

        run_id, payload = env.queue.submit.call_args.args
        assert run_id == f"summarize:{document_id}"
        assert payload["documentId"] == document_id

    def test_completed_runs_are_not_resubmitted(self, session_factory, embedder, chroma_store, llm):
        env = _make_env(session_factory, embedder, chroma_store, llm, workflow_backend="local")
        _upload(env.client)
        _run_submitted_workflow(env)
        env.queue.submit.reset_mock()

        with TestClient(env.app):
            pass

        env.queue.submit.assert_not_called()

    def test_celery_backend_does_not_resubmit(self, env):
        _upload(env.client)
        env.queue.submit.reset_mock()

        with TestClient(env.app):
            pass

        env.queue.submit.assert_not_called()
