"""SQLite-backed persistent store for files, chunks and the embedding cache."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
import sqlite3
from typing import Any

import aiosqlite

from relay_memory.exceptions import StorageError
from relay_memory.lexical import LexicalIndex, select_lexical_index
from relay_memory.logging import get_logger
from relay_memory.models import CacheEntry, ChunkRecord, FileRecord, pack_vector

log = get_logger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id         TEXT PRIMARY KEY,
        path       TEXT NOT NULL,
        text       TEXT NOT NULL,
        start_line INTEGER NOT NULL,
        end_line   INTEGER NOT NULL,
        embedding  BLOB,
        hash       TEXT NOT NULL,
        updated_at TEXT DEFAULT (datetime('now'))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path)",
    """
    CREATE TABLE IF NOT EXISTS files (
        path       TEXT PRIMARY KEY,
        hash       TEXT NOT NULL,
        size       INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS embedding_cache (
        hash       TEXT NOT NULL,
        model      TEXT NOT NULL,
        embedding  BLOB NOT NULL,
        updated_at TEXT DEFAULT (datetime('now')),
        PRIMARY KEY (hash, model)
    )
    """,
)


class MemoryStore:
    """Durable tables plus the lexical index that shares their connection.

    Every multi-statement write runs in one `BEGIN IMMEDIATE` transaction, so
    a file's chunks are either all old or all new after a crash. Readers take
    the same lock as writers and never observe a half-replaced file.
    """

    def __init__(self, db_path: Path | str, *, lexical_engine: str = "auto"):
        self.db_path = Path(db_path).expanduser()
        self.lexical_engine = lexical_engine
        self._db: aiosqlite.Connection | None = None
        self._lexical: LexicalIndex | None = None
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        """Open the database and ensure the schema exists."""
        async with self._lock:
            if self._db is not None:
                return
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(str(self.db_path), isolation_level=None)
            try:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("PRAGMA synchronous=NORMAL")
                for statement in _SCHEMA:
                    await db.execute(statement)
                self._lexical = await select_lexical_index(db, self.lexical_engine)
            except sqlite3.Error as exc:
                await db.close()
                raise StorageError("open", str(exc)) from exc
            self._db = db
        log.debug("Memory store opened", path=str(self.db_path), lexical=self._lexical.name)

    async def close(self) -> None:
        """Close SQLite resources."""
        async with self._lock:
            if self._db is not None:
                await self._db.close()
                self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("connect", "Memory store is not open")
        return self._db

    @property
    def lexical(self) -> LexicalIndex:
        if self._lexical is None:
            raise StorageError("connect", "Memory store is not open")
        return self._lexical

    @property
    def total_changes(self) -> int:
        """Rows modified since the connection was opened."""
        return self.db.total_changes

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        async with self._lock:
            db = self.db
            try:
                await db.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(operation, str(exc)) from exc
            try:
                yield db
            except BaseException as exc:
                await db.rollback()
                if isinstance(exc, sqlite3.Error):
                    raise StorageError(operation, str(exc)) from exc
                raise
            else:
                try:
                    await db.commit()
                except sqlite3.Error as exc:
                    await db.rollback()
                    raise StorageError(operation, str(exc)) from exc

    async def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[Any]:
        async with self._lock:
            async with self.db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())

    async def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Any:
        async with self._lock:
            async with self.db.execute(sql, params) as cursor:
                return await cursor.fetchone()

    async def _scalar(self, sql: str, params: Sequence[Any] = ()) -> int:
        row = await self._fetchone(sql, params)
        return int(row[0]) if row else 0

    # Reads

    async def load_file_hashes(self) -> dict[str, str]:
        rows = await self._fetchall("SELECT path, hash FROM files")
        return {str(row[0]): str(row[1]) for row in rows}

    async def load_files(self) -> list[FileRecord]:
        rows = await self._fetchall("SELECT path, hash, size FROM files ORDER BY path")
        return [FileRecord.from_row(row) for row in rows]

    async def load_chunks(self, path: str | None = None) -> list[ChunkRecord]:
        """All chunks (or one path's) in storage order."""
        sql = "SELECT id, path, text, start_line, end_line, hash, embedding FROM chunks"
        params: tuple[Any, ...] = ()
        if path is not None:
            sql += " WHERE path = ?"
            params = (path,)
        sql += " ORDER BY rowid"
        return [ChunkRecord.from_row(row) for row in await self._fetchall(sql, params)]

    async def chunk_ids_for_path(self, path: str) -> list[str]:
        rows = await self._fetchall("SELECT id FROM chunks WHERE path = ?", (path,))
        return [str(row[0]) for row in rows]

    async def count_chunks(self) -> int:
        return await self._scalar("SELECT COUNT(*) FROM chunks")

    async def count_files(self) -> int:
        return await self._scalar("SELECT COUNT(*) FROM files")

    async def count_cached_embeddings(self) -> int:
        return await self._scalar("SELECT COUNT(*) FROM embedding_cache")

    async def list_file_paths(self) -> list[str]:
        rows = await self._fetchall("SELECT path FROM files ORDER BY path")
        return [str(row[0]) for row in rows]

    async def lexical_scores(
        self, query: str, chunks: Sequence[ChunkRecord], limit: int
    ) -> dict[str, float]:
        async with self._lock:
            return await self.lexical.score(self.db, query, chunks, limit)

    async def lexical_entry_ids(self) -> set[str]:
        async with self._lock:
            return await self.lexical.entry_ids(self.db)

    # Embedding cache

    async def get_cached_embedding(self, content_hash: str, model_id: str) -> tuple[float, ...] | None:
        row = await self._fetchone(
            "SELECT hash, model, embedding FROM embedding_cache WHERE hash = ? AND model = ?",
            (content_hash, model_id),
        )
        if row is None:
            return None
        return CacheEntry.from_row(row).vector

    async def put_cached_embedding(
        self, content_hash: str, model_id: str, vector: Sequence[float]
    ) -> None:
        async with self._lock:
            try:
                await self.db.execute(
                    "INSERT OR REPLACE INTO embedding_cache (hash, model, embedding) VALUES (?, ?, ?)",
                    (content_hash, model_id, pack_vector(vector)),
                )
            except sqlite3.Error as exc:
                raise StorageError("cache_embedding", str(exc)) from exc

    # Atomic writes

    async def replace_file(self, file: FileRecord, chunks: Sequence[ChunkRecord]) -> None:
        """Swap one file's chunks and lexical rows, then upsert its file row."""
        async with self._transaction("replace_file") as db:
            await self._delete_path_chunks(db, file.path)
            await db.executemany(
                """
                INSERT OR REPLACE INTO chunks
                    (id, path, text, start_line, end_line, embedding, hash)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.path,
                        chunk.text,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.embedding_blob(),
                        chunk.content_hash,
                    )
                    for chunk in chunks
                ],
            )
            await self.lexical.insert(db, chunks)
            await db.execute(
                """
                INSERT INTO files (path, hash, size, updated_at) VALUES (?, ?, ?, datetime('now'))
                ON CONFLICT(path) DO UPDATE SET
                    hash=excluded.hash,
                    size=excluded.size,
                    updated_at=excluded.updated_at
                """,
                (file.path, file.content_hash, file.size),
            )

    async def remove_files(self, paths: Sequence[str]) -> None:
        """Delete chunks, lexical rows and file rows for `paths`."""
        if not paths:
            return
        async with self._transaction("remove_files") as db:
            for path in paths:
                await self._delete_path_chunks(db, path)
                await db.execute("DELETE FROM files WHERE path = ?", (path,))

    async def _delete_path_chunks(self, db: aiosqlite.Connection, path: str) -> None:
        async with db.execute("SELECT id FROM chunks WHERE path = ?", (path,)) as cursor:
            chunk_ids = [str(row[0]) for row in await cursor.fetchall()]
        await self.lexical.delete(db, chunk_ids)
        await db.execute("DELETE FROM chunks WHERE path = ?", (path,))
