# =============================================================================
# Embedding Service - Query Vectors, Cached by Content Hash
# =============================================================================
#
# Turns the planner's retrieval text into a 1536-dimension vector using any
# OpenAI-compatible embedding endpoint (OpenAI, Alibaba DashScope, ...).
#
# Embeddings are idempotent for identical text, so CachedEmbedder fronts the
# provider with a KeyValueCache keyed by the SHA-256 of the text. The cache
# is checked before the remote call on every request.
#
# ARCHITECTURE:
#   EmbeddingProvider (Protocol)
#   ├── OpenAIEmbeddingProvider - AsyncOpenAI embeddings endpoint
#   └── CachedEmbedder          - hash → cache → provider → cache
# =============================================================================

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Protocol

from buildermatch.config import settings
from buildermatch.exceptions import ProviderUnavailableError
from buildermatch.services.cache import KeyValueCache, embedding_key

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for `text`."""
        ...


# ---------------------------------------------------------------------------
# Implementation: OpenAI-compatible embeddings
# ---------------------------------------------------------------------------


class OpenAIEmbeddingProvider:
    """
    Embedding provider backed by the OpenAI SDK.

    API key resolution order:
      1. OPENAI_API_KEY (explicit embedding key)
      2. LLM_API_KEY (shared key, e.g. one DashScope key for both)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.openai_api_key or settings.llm_api_key
        if not resolved_key:
            raise ProviderUnavailableError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.embedding_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.embedding_model
        self._dimensions = dimensions or settings.embedding_dimensions

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def embed(self, text: str) -> list[float]:
        create_kwargs: dict = {"model": self._model, "input": [text]}
        if self._dimensions:
            create_kwargs["dimensions"] = self._dimensions

        response = await self._client.embeddings.create(**create_kwargs)
        if not response.data:
            raise ValueError("Embedding response contained no vectors")
        return list(response.data[0].embedding)


# ---------------------------------------------------------------------------
# Cache front
# ---------------------------------------------------------------------------


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class CachedEmbedder:
    """
    Embedding provider wrapper that consults the cache first.

    Remote calls are bounded by `timeout`; asyncio.TimeoutError propagates
    to the caller like any other provider error. Cache failures never do.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: KeyValueCache,
        ttl_seconds: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.embedding_cache_ttl_seconds
        self._timeout = timeout if timeout is not None else settings.external_call_timeout_seconds

    async def embed(self, text: str) -> list[float]:
        key = embedding_key(content_hash(text))

        cached = await self._cache.get(key)
        if cached:
            logger.debug("Embedding cache hit (%s)", key[:24])
            return cached

        vector = await asyncio.wait_for(self._provider.embed(text), timeout=self._timeout)
        await self._cache.set(key, vector, self._ttl)
        return vector
