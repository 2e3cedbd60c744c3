"""Relay Memory - local hybrid memory/retrieval engine for a workspace."""

__version__ = "0.1.0"

from relay_memory.config import Config
from relay_memory.engine import MemoryEngine, create_memory_engine
from relay_memory.models import IndexStats, SearchResult

__all__ = ["Config", "MemoryEngine", "create_memory_engine", "IndexStats", "SearchResult", "__version__"]
