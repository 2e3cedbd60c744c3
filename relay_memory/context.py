"""Render search hits as a recalled-context block for prompt injection."""

from __future__ import annotations

from collections.abc import Sequence

from relay_memory.models import SearchResult

RECALL_OPEN = "<memory_recall>"
RECALL_CLOSE = "</memory_recall>"
RECALL_HEADER = "Relevant memory snippets (retrieved automatically by the memory system):"
SNIPPET_SEPARATOR = "\n---\n"


def format_context(results: Sequence[SearchResult], snippet_chars: int = 400) -> str:
    """Return the recall block, or "" when there is nothing to inject."""
    if not results:
        return ""
    limit = max(1, int(snippet_chars))
    snippets = SNIPPET_SEPARATOR.join(
        f"[source: {item.path}#L{item.start_line}]\n{item.text[:limit]}" for item in results
    )
    return "\n".join(["", RECALL_OPEN, RECALL_HEADER, snippets, RECALL_CLOSE])
