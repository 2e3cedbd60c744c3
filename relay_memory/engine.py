"""Memory engine facade: index, search, prompt context and stats."""

from __future__ import annotations

from pathlib import Path
from types import TracebackType

from relay_memory.chunking import Chunker
from relay_memory.config import Config, get_config
from relay_memory.context import format_context
from relay_memory.embeddings import EmbeddingClient, EmbeddingProvider, create_embedding_provider
from relay_memory.indexer import IncrementalIndexer
from relay_memory.journal import MemoryJournal
from relay_memory.logging import get_logger
from relay_memory.models import IndexStats, SearchResult
from relay_memory.scanner import WorkspaceScanner
from relay_memory.search import HybridSearcher
from relay_memory.store import MemoryStore

log = get_logger(__name__)


class MemoryEngine:
    """Local hybrid memory over one workspace directory."""

    def __init__(
        self,
        *,
        workspace_path: Path,
        store: MemoryStore,
        embeddings: EmbeddingClient,
        indexer: IncrementalIndexer,
        searcher: HybridSearcher,
        journal: MemoryJournal,
        default_top_k: int = 5,
        default_min_score: float = 0.3,
        context_min_score: float = 0.25,
        context_snippets: int = 3,
        snippet_chars: int = 400,
    ):
        self.workspace_path = workspace_path
        self.store = store
        self.embeddings = embeddings
        self.indexer = indexer
        self.searcher = searcher
        self.journal = journal
        self.default_top_k = default_top_k
        self.default_min_score = default_min_score
        self.context_min_score = context_min_score
        self.context_snippets = context_snippets
        self.snippet_chars = snippet_chars

    async def open(self) -> MemoryEngine:
        await self.store.open()
        return self

    async def close(self) -> None:
        await self.embeddings.provider.aclose()
        await self.store.close()

    async def __aenter__(self) -> MemoryEngine:
        return await self.open()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def index(self) -> int:
        """Run an incremental pass; returns the total chunk count."""
        await self.store.open()
        return await self.indexer.index()

    async def search(
        self,
        query: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[SearchResult]:
        await self.store.open()
        return await self.searcher.search(
            query,
            top_k=self.default_top_k if top_k is None else top_k,
            min_score=self.default_min_score if min_score is None else min_score,
        )

    async def get_context_for_prompt(self, query: str, max_snippets: int | None = None) -> str:
        """Recalled-context block for `query`, or "" when nothing clears the threshold."""
        results = await self.search(
            query,
            top_k=self.context_snippets if max_snippets is None else max_snippets,
            min_score=self.context_min_score,
        )
        return format_context(results, snippet_chars=self.snippet_chars)

    async def stats(self) -> IndexStats:
        await self.store.open()
        return IndexStats(
            chunk_count=await self.store.count_chunks(),
            file_count=await self.store.count_files(),
            cached_embedding_count=await self.store.count_cached_embeddings(),
            file_paths=await self.store.list_file_paths(),
        )


def create_memory_engine(
    config: Config | None = None,
    *,
    workspace: Path | str | None = None,
    provider: EmbeddingProvider | None = None,
) -> MemoryEngine:
    """Build an engine from configuration. Call `open()` or use `async with`."""
    config = config or get_config()
    workspace_path = (
        Path(workspace).expanduser().resolve() if workspace is not None else config.resolved_workspace_path()
    )
    indexing = config.indexing
    search = config.search
    emb_cfg = config.embeddings

    store = MemoryStore(config.resolved_db_path(workspace_path), lexical_engine=search.lexical_engine)
    embeddings = EmbeddingClient(
        store=store,
        provider=provider or create_embedding_provider(emb_cfg),
        max_retries=emb_cfg.max_retries,
        retry_backoff_seconds=emb_cfg.retry_backoff_seconds,
    )
    indexer = IncrementalIndexer(
        store=store,
        scanner=WorkspaceScanner.from_config(workspace_path, indexing),
        chunker=Chunker(
            max_chars=indexing.chunk_max_chars,
            overlap=indexing.chunk_overlap_lines,
            min_chars=indexing.min_chunk_chars,
        ),
        embeddings=embeddings,
        freshness_seconds=search.freshness_seconds,
    )
    searcher = HybridSearcher(
        store=store,
        embeddings=embeddings,
        indexer=indexer,
        vector_weight=search.vector_weight,
        text_weight=search.text_weight,
        lexical_candidate_factor=search.lexical_candidate_factor,
    )
    log.debug("Memory engine created", workspace=str(workspace_path), model=embeddings.model_id)
    return MemoryEngine(
        workspace_path=workspace_path,
        store=store,
        embeddings=embeddings,
        indexer=indexer,
        searcher=searcher,
        journal=MemoryJournal.from_config(workspace_path, config.journal),
        default_top_k=search.top_k,
        default_min_score=search.min_score,
        context_min_score=search.context_min_score,
        context_snippets=search.context_snippets,
        snippet_chars=search.snippet_chars,
    )
