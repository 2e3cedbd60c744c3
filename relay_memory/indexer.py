"""Incremental indexer: diff the workspace against the store and re-embed changes."""

from __future__ import annotations

import asyncio
from enum import Enum
import time

from relay_memory.chunking import Chunker
from relay_memory.embeddings import EmbeddingClient
from relay_memory.exceptions import EmbeddingError
from relay_memory.logging import get_logger
from relay_memory.models import ChunkRecord, Embedded, Missing
from relay_memory.scanner import ScannedFile, WorkspaceScanner
from relay_memory.store import MemoryStore

log = get_logger(__name__)


class IndexState(Enum):
    IDLE = "idle"
    INDEXING = "indexing"


class IncrementalIndexer:
    """Single-flight incremental index passes over one workspace."""

    def __init__(
        self,
        *,
        store: MemoryStore,
        scanner: WorkspaceScanner,
        chunker: Chunker,
        embeddings: EmbeddingClient,
        freshness_seconds: float = 600,
    ):
        self.store = store
        self.scanner = scanner
        self.chunker = chunker
        self.embeddings = embeddings
        self.freshness_seconds = max(0.0, float(freshness_seconds))
        self._state = IndexState.IDLE
        self._state_lock = asyncio.Lock()
        self._indexed_at: float | None = None

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def indexed_at(self) -> float | None:
        """Monotonic time of the last completed pass."""
        return self._indexed_at

    def is_stale(self) -> bool:
        if self._indexed_at is None:
            return True
        return (time.monotonic() - self._indexed_at) > self.freshness_seconds

    async def _try_begin(self) -> bool:
        async with self._state_lock:
            if self._state is IndexState.INDEXING:
                return False
            self._state = IndexState.INDEXING
            return True

    async def _finish(self) -> None:
        async with self._state_lock:
            self._state = IndexState.IDLE

    async def index(self) -> int:
        """Run one incremental pass and return the total chunk count."""
        if not await self._try_begin():
            log.info("Index pass already running; returning current count")
            return await self.store.count_chunks()
        try:
            return await self._run_pass()
        finally:
            await self._finish()

    async def _run_pass(self) -> int:
        # A missing root is not an empty workspace; keep the stored index.
        if not self.scanner.workspace_path.is_dir():
            log.warning("Workspace directory missing; skipping index pass", path=str(self.scanner.workspace_path))
            return await self.store.count_chunks()

        disk_files = await asyncio.to_thread(self.scanner.scan)
        stored = await self.store.load_file_hashes()

        changed = [path for path, scanned in disk_files.items() if stored.get(path) != scanned.content_hash]
        deleted = [path for path in stored if path not in disk_files]

        if not changed and not deleted:
            self._indexed_at = time.monotonic()
            return await self.store.count_chunks()

        log.info("Incremental index", changed=len(changed), deleted=len(deleted))
        if changed and not self.embeddings.enabled:
            log.warning("Embedding provider not configured; indexing keyword-only", model=self.embeddings.model_id)

        await self.store.remove_files(deleted)

        hits_before = self.embeddings.cache_hits
        calls_before = self.embeddings.api_calls
        new_chunks = 0
        for path in changed:
            new_chunks += await self._index_file(disk_files[path])

        self._indexed_at = time.monotonic()
        total = await self.store.count_chunks()
        log.info(
            "Index pass complete",
            files=len(changed),
            chunks=new_chunks,
            cache_hits=self.embeddings.cache_hits - hits_before,
            api_calls=self.embeddings.api_calls - calls_before,
            total=total,
        )
        return total

    async def _index_file(self, scanned: ScannedFile) -> int:
        chunks = self.chunker.chunk(scanned.content, scanned.path)
        embedded: list[ChunkRecord] = []
        for chunk in chunks:
            embedded.append(chunk.with_embedding(await self._embed_chunk(chunk)))
        await self.store.replace_file(scanned.record(), embedded)
        return len(embedded)

    async def _embed_chunk(self, chunk: ChunkRecord) -> Embedded | Missing:
        if not self.embeddings.enabled:
            return Missing("embedding provider not configured")
        try:
            vector = await self.embeddings.embed(chunk.text)
        except EmbeddingError as exc:
            log.warning("Embedding failed; storing chunk without vector", chunk=chunk.id, error=str(exc))
            return Missing(str(exc))
        return Embedded(tuple(vector))
