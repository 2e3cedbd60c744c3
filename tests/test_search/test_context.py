from pathlib import Path

import pytest

from relay_memory.config import Config
from relay_memory.context import format_context
from relay_memory.engine import create_memory_engine
from relay_memory.models import SearchResult


def _result(path: str, text: str, start: int = 1, end: int = 1, score: float = 0.5) -> SearchResult:
    return SearchResult(path=path, text=text, score=score, start_line=start, end_line=end)


def test_format_context_wraps_snippets_with_sources():
    block = format_context(
        [
            _result("a.md", "The quarterly budget was approved.", start=1, end=2),
            _result("memory/2024-05-01.md", "Buy milk.", start=7, end=9),
        ]
    )

    assert block == (
        "\n<memory_recall>\n"
        "Relevant memory snippets (retrieved automatically by the memory system):\n"
        "[source: a.md#L1]\nThe quarterly budget was approved.\n"
        "---\n"
        "[source: memory/2024-05-01.md#L7]\nBuy milk.\n"
        "</memory_recall>"
    )


def test_format_context_truncates_snippets_and_handles_empty():
    block = format_context([_result("long.md", "x" * 50)], snippet_chars=10)

    assert "[source: long.md#L1]\n" + "x" * 10 + "\n</memory_recall>" in block
    assert format_context([]) == ""


@pytest.mark.asyncio
async def test_prompt_context_is_empty_when_nothing_matches(tmp_path: Path):
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    (workspace / "b.md").write_text("Grocery list: milk, eggs.", encoding="utf-8")

    cfg = Config()
    cfg.embeddings.provider = "none"
    async with create_memory_engine(cfg, workspace=workspace) as engine:
        missing = await engine.get_context_for_prompt("zebra migration")
        found = await engine.get_context_for_prompt("milk eggs")

    assert missing == ""
    assert "[source: b.md#L1]\nGrocery list: milk, eggs." in found
    assert found.startswith("\n<memory_recall>")
