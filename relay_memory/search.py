"""Hybrid search: cosine similarity blended with lexical relevance."""

from __future__ import annotations

from collections.abc import Sequence
import math

from relay_memory.embeddings import EmbeddingClient
from relay_memory.exceptions import EmbeddingError
from relay_memory.indexer import IncrementalIndexer
from relay_memory.logging import get_logger
from relay_memory.models import SearchResult
from relay_memory.store import MemoryStore

log = get_logger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; mismatched or zero vectors score 0."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    mag_a = 0.0
    mag_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        mag_a += x * x
        mag_b += y * y
    denom = math.sqrt(mag_a) * math.sqrt(mag_b)
    if denom <= 1e-12:
        return 0.0
    score = dot / denom
    if not math.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))


class HybridSearcher:
    """Score every stored chunk by vector similarity and keyword relevance."""

    def __init__(
        self,
        *,
        store: MemoryStore,
        embeddings: EmbeddingClient,
        indexer: IncrementalIndexer | None = None,
        vector_weight: float = 0.7,
        text_weight: float = 0.3,
        lexical_candidate_factor: int = 4,
    ):
        self.store = store
        self.embeddings = embeddings
        self.indexer = indexer
        vector_weight = max(0.0, float(vector_weight))
        text_weight = max(0.0, float(text_weight))
        total = vector_weight + text_weight
        if total <= 0:
            vector_weight, text_weight, total = 0.7, 0.3, 1.0
        self.vector_weight = vector_weight / total
        self.text_weight = text_weight / total
        self.lexical_candidate_factor = max(1, int(lexical_candidate_factor))

    async def search(self, query: str, top_k: int = 5, min_score: float = 0.3) -> list[SearchResult]:
        cleaned = str(query or "").strip()
        if not cleaned or top_k <= 0:
            return []

        if self.indexer is not None and self.indexer.is_stale():
            try:
                await self.indexer.index()
            except Exception as exc:
                log.warning("Automatic index before search failed", error=str(exc))

        query_vector: list[float] | None = None
        if self.embeddings.enabled:
            try:
                query_vector = await self.embeddings.embed(cleaned)
            except EmbeddingError as exc:
                log.warning("Query embedding failed; keyword-only search", error=str(exc))

        chunks = await self.store.load_chunks()
        if not chunks:
            return []
        keyword_scores = await self.store.lexical_scores(
            cleaned, chunks, limit=top_k * self.lexical_candidate_factor
        )

        scored: list[SearchResult] = []
        for chunk in chunks:
            vector_score = 0.0
            if query_vector is not None and chunk.vector is not None:
                vector_score = max(0.0, cosine_similarity(query_vector, chunk.vector))
            keyword_score = min(1.0, max(0.0, keyword_scores.get(chunk.id, 0.0)))
            if query_vector is not None:
                score = self.vector_weight * vector_score + self.text_weight * keyword_score
            else:
                score = keyword_score
            scored.append(
                SearchResult(
                    path=chunk.path,
                    text=chunk.text,
                    score=min(1.0, max(0.0, score)),
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    vector_score=vector_score,
                    keyword_score=keyword_score,
                )
            )

        results = [item for item in scored if item.score >= min_score]
        results.sort(key=lambda item: item.score, reverse=True)
        return results[:top_k]
