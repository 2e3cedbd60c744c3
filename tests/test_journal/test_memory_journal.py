from datetime import UTC, datetime
import json
from pathlib import Path

import pytest

from relay_memory.config import Config
from relay_memory.engine import create_memory_engine
from relay_memory.journal import MemoryJournal


def test_daily_log_creates_header_then_appends(tmp_path: Path):
    journal = MemoryJournal(tmp_path)
    morning = datetime(2024, 5, 1, 9, 15)
    evening = datetime(2024, 5, 1, 18, 40)

    path = journal.append_daily_log("Met with finance about the budget.", now=morning)
    journal.append_daily_log("Remember to buy milk.", now=evening)

    assert path == tmp_path / "memory" / "2024-05-01.md"
    assert path.read_text(encoding="utf-8") == (
        "# 2024-05-01 journal\n"
        "\n### 09:15\nMet with finance about the budget.\n"
        "\n### 18:40\nRemember to buy milk.\n"
    )


def test_session_log_writes_json_lines(tmp_path: Path):
    journal = MemoryJournal(tmp_path, session_content_chars=5)
    now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    path = journal.append_session_log("default", "user", "hello there", now=now)
    journal.append_session_log("default", "assistant", "hi", model="gpt-test", now=now)

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert path == tmp_path / "sessions" / "2024-05-01.jsonl"
    assert lines[0] == {"ts": now.isoformat(), "workspace": "default", "role": "user", "content": "hello"}
    assert lines[1]["model"] == "gpt-test"
    assert "model" not in lines[0]


def test_recent_summary_includes_days_and_long_term_memory(tmp_path: Path):
    journal = MemoryJournal(tmp_path, daily_chars=40)
    journal.append_daily_log("Yesterday's note.", now=datetime(2024, 4, 30, 8, 0))
    journal.append_daily_log("Today's note. " + "z" * 100, now=datetime(2024, 5, 1, 8, 0))
    journal.append_daily_log("Too old to show.", now=datetime(2024, 4, 20, 8, 0))
    (tmp_path / "MEMORY.md").write_text("Long-term: the user prefers concise answers and metric units.", encoding="utf-8")

    summary = journal.recent_summary(days=2, now=datetime(2024, 5, 1, 20, 0))
    sections = summary.split("\n\n## ")

    assert summary.startswith("## 2024-05-01.md\n")
    assert sections[1].startswith("2024-04-30.md\n")
    assert sections[2].startswith("MEMORY.md (long-term memory)\n")
    assert "Too old" not in summary
    assert "z" * 100 not in summary


def test_short_long_term_memory_is_skipped(tmp_path: Path):
    journal = MemoryJournal(tmp_path)
    (tmp_path / "MEMORY.md").write_text("tbd", encoding="utf-8")

    assert journal.recent_summary(days=1) == ""


@pytest.mark.asyncio
async def test_journal_entries_are_indexed_but_session_logs_are_not(tmp_path: Path):
    cfg = Config()
    cfg.embeddings.provider = "none"
    async with create_memory_engine(cfg, workspace=tmp_path) as engine:
        engine.journal.append_daily_log("The offsite is booked for the second week of June.")
        engine.journal.append_session_log("default", "user", "where is the offsite?")
        await engine.index()
        stats = await engine.stats()

    assert len(stats.file_paths) == 1
    assert stats.file_paths[0].startswith("memory/")
