"""Lexical ranking strategies: SQLite FTS5 BM25 with a substring fallback."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
import math
import re
import sqlite3

import aiosqlite

from relay_memory.logging import get_logger
from relay_memory.models import ChunkRecord

log = get_logger(__name__)

FTS_TABLE = "chunks_fts"

_FTS_SPECIAL_RE = re.compile(r"[*\"(){}\[\]:^~!@#$%&|\\/<>+=;]")
_QUERY_SPLIT_RE = re.compile(r"[\s,，。、！？；：“”‘’\"'（）\[\]{}]+")


def tokenize_query(query: str) -> list[str]:
    """Lowercase query tokens longer than one character."""
    return [token for token in _QUERY_SPLIT_RE.split(query.lower()) if len(token) > 1]


def build_fts_query(query: str) -> str | None:
    """Quote each token and OR them together; FTS operators are stripped."""
    tokens = [token for token in _FTS_SPECIAL_RE.sub(" ", query).split() if token]
    if not tokens:
        return None
    return " OR ".join(f'"{token}"' for token in tokens)


def substring_scores(query: str, chunks: Sequence[ChunkRecord]) -> dict[str, float]:
    """Fraction of query tokens contained in each chunk's text."""
    tokens = tokenize_query(query)
    if not tokens:
        return {}
    scores: dict[str, float] = {}
    for chunk in chunks:
        text = chunk.text.lower()
        hits = sum(1 for token in tokens if token in text)
        if hits:
            scores[chunk.id] = hits / len(tokens)
    return scores


class LexicalIndex(ABC):
    """Keyword relevance over chunk text, independent of vectors.

    Write methods run on the store's connection inside its per-file
    transaction, so lexical rows change atomically with chunk rows.
    """

    name: str = ""

    @abstractmethod
    async def ensure_schema(self, conn: aiosqlite.Connection) -> None:
        """Create backing structures, if any."""

    @abstractmethod
    async def delete(self, conn: aiosqlite.Connection, chunk_ids: Sequence[str]) -> None:
        """Drop entries for the given chunk ids."""

    @abstractmethod
    async def insert(self, conn: aiosqlite.Connection, chunks: Sequence[ChunkRecord]) -> None:
        """Add entries for freshly written chunks."""

    @abstractmethod
    async def entry_ids(self, conn: aiosqlite.Connection) -> set[str]:
        """Chunk ids currently present in the lexical structure."""

    @abstractmethod
    async def score(
        self,
        conn: aiosqlite.Connection,
        query: str,
        chunks: Sequence[ChunkRecord],
        limit: int,
    ) -> dict[str, float]:
        """Return chunk id -> relevance in [0, 1] (higher is better)."""


class SubstringLexicalIndex(LexicalIndex):
    """Naive keyword matching; keeps no persistent structure."""

    name = "substring"

    async def ensure_schema(self, conn: aiosqlite.Connection) -> None:
        return None

    async def delete(self, conn: aiosqlite.Connection, chunk_ids: Sequence[str]) -> None:
        return None

    async def insert(self, conn: aiosqlite.Connection, chunks: Sequence[ChunkRecord]) -> None:
        return None

    async def entry_ids(self, conn: aiosqlite.Connection) -> set[str]:
        return set()

    async def score(
        self,
        conn: aiosqlite.Connection,
        query: str,
        chunks: Sequence[ChunkRecord],
        limit: int,
    ) -> dict[str, float]:
        return substring_scores(query, chunks)


class Fts5LexicalIndex(LexicalIndex):
    """BM25 ranking through an FTS5 virtual table keyed by chunk id."""

    name = "fts5"

    async def ensure_schema(self, conn: aiosqlite.Connection) -> None:
        await conn.execute(
            f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE}
            USING fts5(chunk_id UNINDEXED, text, tokenize='unicode61')
            """
        )

    async def delete(self, conn: aiosqlite.Connection, chunk_ids: Sequence[str]) -> None:
        if chunk_ids:
            await conn.executemany(
                f"DELETE FROM {FTS_TABLE} WHERE chunk_id = ?",
                [(chunk_id,) for chunk_id in chunk_ids],
            )

    async def insert(self, conn: aiosqlite.Connection, chunks: Sequence[ChunkRecord]) -> None:
        if chunks:
            await conn.executemany(
                f"INSERT INTO {FTS_TABLE} (chunk_id, text) VALUES (?, ?)",
                [(chunk.id, chunk.text) for chunk in chunks],
            )

    async def entry_ids(self, conn: aiosqlite.Connection) -> set[str]:
        async with conn.execute(f"SELECT chunk_id FROM {FTS_TABLE}") as cursor:
            return {str(row[0]) for row in await cursor.fetchall()}

    async def score(
        self,
        conn: aiosqlite.Connection,
        query: str,
        chunks: Sequence[ChunkRecord],
        limit: int,
    ) -> dict[str, float]:
        fts_query = build_fts_query(query)
        scores: dict[str, float] = {}
        if fts_query:
            try:
                async with conn.execute(
                    f"""
                    SELECT chunk_id, rank FROM {FTS_TABLE}
                    WHERE {FTS_TABLE} MATCH ?
                    ORDER BY rank
                    LIMIT ?
                    """,
                    (fts_query, max(1, int(limit))),
                ) as cursor:
                    rows = await cursor.fetchall()
            except sqlite3.Error as exc:
                log.warning("FTS5 query failed", error=str(exc))
                rows = []
            # bm25() is negative; more negative means more relevant.
            strengths: dict[str, float] = {}
            for chunk_id, rank in rows:
                value = float(rank) if isinstance(rank, (int, float)) and math.isfinite(float(rank)) else 0.0
                strengths[str(chunk_id)] = abs(value)
            best = max(strengths.values(), default=0.0)
            for chunk_id, strength in strengths.items():
                scores[chunk_id] = strength / best if best > 0 else 1.0
        if not scores:
            # Tokenizer misses (e.g. unsegmented CJK text) still get substring matches.
            return substring_scores(query, chunks)
        return scores


async def select_lexical_index(conn: aiosqlite.Connection, engine: str = "auto") -> LexicalIndex:
    """Pick the lexical strategy once, probing FTS5 support when needed."""
    if engine == "substring":
        return SubstringLexicalIndex()
    fts = Fts5LexicalIndex()
    try:
        await fts.ensure_schema(conn)
    except sqlite3.Error as exc:
        if engine == "fts5":
            raise
        log.warning("FTS5 unavailable; using substring keyword matching", error=str(exc))
        return SubstringLexicalIndex()
    return fts
