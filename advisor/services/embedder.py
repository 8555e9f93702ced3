# =============================================================================
# Embedding Service — Query Vectors over the OpenAI Embeddings API
# =============================================================================
#
# Works with OpenAI or any vendor exposing the same /embeddings endpoint
# (set EMBEDDING_BASE_URL). Vectors are requested at
# settings.embedding_dimensions so they line up with stored documents.
#
# The SDK client here is synchronous. OpenAIEmbeddingProvider, the async
# EmbeddingProvider the Retriever consumes, runs each call in a worker
# thread via asyncio.to_thread.
#
# Failures are not retried: the Retriever wraps them in RetrievalError
# and the turn continues without documents.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from openai import OpenAI

from advisor.config import settings

logger = logging.getLogger(__name__)

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    """
    Shared embeddings client, created on first use.

    The key is OPENAI_API_KEY, falling back to LLM_API_KEY when the
    same vendor serves both chat and embeddings.

    Raises:
        ValueError: If neither key is set.
    """
    global _client
    if _client is not None:
        return _client

    key = settings.openai_api_key or settings.llm_api_key
    if not key:
        raise ValueError(
            "No API key configured for embeddings. "
            "Set OPENAI_API_KEY or LLM_API_KEY in .env"
        )

    if settings.embedding_base_url:
        _client = OpenAI(api_key=key, base_url=settings.embedding_base_url)
    else:
        _client = OpenAI(api_key=key)
    logger.info(
        "Embedding client ready (model=%s, dimensions=%d)",
        settings.embedding_model,
        settings.embedding_dimensions,
    )
    return _client


def embed_texts(texts: Sequence[str]) -> list[list[float]]:
    """
    Embed several texts in one request.

    The API may return items out of order; results are placed back by
    their `index` so output[i] belongs to texts[i].
    """
    if not texts:
        return []

    request: dict = {"model": settings.embedding_model, "input": list(texts)}
    if settings.embedding_dimensions:
        request["dimensions"] = settings.embedding_dimensions
    response = _get_client().embeddings.create(**request)

    vectors: list[list[float]] = [[] for _ in texts]
    for item in response.data:
        vectors[item.index] = item.embedding

    logger.debug(
        "Embedded %d text(s), prompt_tokens=%d",
        len(texts),
        response.usage.prompt_tokens if response.usage else 0,
    )
    return vectors


def embed_query(text: str) -> list[float]:
    return embed_texts([text])[0]


class OpenAIEmbeddingProvider:
    """EmbeddingProvider for the Retriever, backed by embed_query()."""

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(embed_query, text)
