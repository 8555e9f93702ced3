# =============================================================================
# Retrieval Engine — Brute-Force Cosine Similarity
# =============================================================================
#
# Embeds a query and ranks every known document by cosine similarity.
#
#   Retriever.retrieve(query, k)
#   ├── embedder.embed(query)            provider failure → RetrievalError
#   ├── source.list_documents()          full O(N) scan, no index
#   ├── cosine_similarity(query, doc)    zero norm → 0.0, never NaN
#   └── stable sort desc → top-k         ties keep their original order
#
# Vectors of different dimension are compared over their shared leading
# prefix. An approximate-nearest-neighbour index can replace the scan
# behind the same retrieve(query, k) contract.
# =============================================================================

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Protocol

from advisor.models.domain import Document, ScoredDocument

logger = logging.getLogger(__name__)


class RetrievalError(Exception):
    """The embedding provider or document source failed."""


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...


class DocumentSource(Protocol):
    async def list_documents(self) -> list[Document]:
        ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity over the shared leading prefix of `a` and `b`.

    Returns exactly 0.0 when either prefix has zero norm (including
    empty vectors).
    """
    n = min(len(a), len(b))
    if n == 0:
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for i in range(n):
        x = float(a[i])
        y = float(b[i])
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_documents(
    query_embedding: Sequence[float],
    documents: Sequence[Document],
    k: int,
) -> list[ScoredDocument]:
    """Score, stable-sort descending and keep the top k."""
    if k <= 0:
        return []
    scored = [
        ScoredDocument(document=doc, score=cosine_similarity(query_embedding, doc.embedding))
        for doc in documents
    ]
    # sorted() is stable, so equal scores keep document order
    scored = sorted(scored, key=lambda s: s.score, reverse=True)
    return scored[:k]


class Retriever:
    """Ranks documents from a DocumentSource against an embedded query."""

    def __init__(self, embedder: EmbeddingProvider, source: DocumentSource) -> None:
        self._embedder = embedder
        self._source = source

    async def retrieve(self, query_text: str, k: int) -> list[ScoredDocument]:
        """
        Return the k documents most similar to `query_text`.

        Raises:
            RetrievalError: If embedding the query or listing documents fails.
        """
        if k <= 0:
            return []

        try:
            query_embedding = await self._embedder.embed(query_text)
        except Exception as e:
            raise RetrievalError(f"Embedding provider failed: {e}") from e

        try:
            documents = await self._source.list_documents()
        except Exception as e:
            raise RetrievalError(f"Document source failed: {e}") from e

        results = rank_documents(query_embedding, documents, k)
        logger.debug(
            "Retrieved %d of %d documents (top score=%.3f)",
            len(results),
            len(documents),
            results[0].score if results else 0.0,
        )
        return results
