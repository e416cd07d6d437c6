# =============================================================================
# Embedding Service — Batch Vector Generation (Provider-Agnostic)
# =============================================================================
#
# Generates vector embeddings using any OpenAI-compatible embedding API.
#
# The embedder is a plain object built once by build_container() and passed
# to the VectorIndexer. The OpenAI client inside it manages its own HTTP
# connection pool and is thread-safe.
#
# No retry logic here: the ingestion request surfaces failures to the client
# and the workflow engine owns retries for background work.
#
# TOKEN LIMITS:
# - Each text: max 8,191 tokens
# - Batches of `batch_size` texts per API call (default 100)
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

import openai
from openai import OpenAI

from paperchat.errors import RateLimitError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Text → vector capability."""

    def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts, preserving input order."""
        ...

    def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        ...


class OpenAIEmbedder:
    """
    Embedder backed by the OpenAI embeddings endpoint (or any compatible API).

    API key resolution order:
      1. `api_key` argument (OPENAI_API_KEY)
      2. `fallback_api_key` (LLM_API_KEY, one key for LLM + embeddings)
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        dimensions: int | None = 1536,
        batch_size: int = 100,
        base_url: str | None = None,
        fallback_api_key: str | None = None,
    ) -> None:
        resolved_key = api_key or fallback_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        if base_url:
            client_kwargs["base_url"] = base_url

        self._client = OpenAI(**client_kwargs)
        self._model = model
        self._dimensions = dimensions
        self._batch_size = batch_size

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            model, base_url or "https://api.openai.com/v1",
        )

    def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Generate embeddings for `texts`, in sub-batches of `batch_size`.

        Returns embeddings in the SAME ORDER as the input texts.

        Raises:
            RateLimitError: The provider answered 429.
            openai.APIError: Any other API failure.
        """
        if not texts:
            return []

        all_embeddings: list[list[float]] = [[] for _ in texts]

        for i in range(0, len(texts), self._batch_size):
            batch = list(texts[i : i + self._batch_size])
            logger.debug(
                "Embedding batch %d–%d of %d texts (model=%s)",
                i + 1, min(i + self._batch_size, len(texts)), len(texts),
                self._model,
            )

            create_kwargs: dict = {"model": self._model, "input": batch}
            if self._dimensions:
                create_kwargs["dimensions"] = self._dimensions

            try:
                response = self._client.embeddings.create(**create_kwargs)
            except openai.RateLimitError as exc:
                logger.warning("Embedding API rate limited: %s", exc)
                raise RateLimitError(str(exc)) from exc

            # Items carry their position in the batch; place them by index
            for item in response.data:
                all_embeddings[i + item.index] = item.embedding

        logger.info(
            "Generated %d embeddings (model=%s)", len(texts), self._model,
        )
        return all_embeddings

    def embed_query(self, text: str) -> list[float]:
        return self.embed_documents([text])[0]
