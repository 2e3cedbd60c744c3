"""Daily journal, session transcript log and recent-memory summary.

Daily notes live in `<workspace>/memory/YYYY-MM-DD.md` and are picked up by
the indexer like any other markdown file. Session transcripts go to
`<workspace>/sessions/YYYY-MM-DD.jsonl`, a directory the scanner skips.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import json
from pathlib import Path
from typing import Literal

from relay_memory.config import JournalConfig
from relay_memory.logging import get_logger

log = get_logger(__name__)

LONG_TERM_FILENAME = "MEMORY.md"
_LONG_TERM_MIN_CHARS = 50


class MemoryJournal:
    """Append-only notes that feed the workspace index."""

    def __init__(
        self,
        workspace_path: Path,
        *,
        memory_dir: str = "memory",
        sessions_dir: str = "sessions",
        daily_chars: int = 1200,
        long_term_chars: int = 2000,
        session_content_chars: int = 8000,
    ):
        self.workspace_path = Path(workspace_path)
        self.memory_dir = self.workspace_path / memory_dir
        self.sessions_dir = self.workspace_path / sessions_dir
        self.daily_chars = max(1, int(daily_chars))
        self.long_term_chars = max(1, int(long_term_chars))
        self.session_content_chars = max(1, int(session_content_chars))

    @classmethod
    def from_config(cls, workspace_path: Path, cfg: JournalConfig) -> MemoryJournal:
        return cls(
            workspace_path,
            memory_dir=cfg.memory_dir,
            sessions_dir=cfg.sessions_dir,
            daily_chars=cfg.daily_chars,
            long_term_chars=cfg.long_term_chars,
            session_content_chars=cfg.session_content_chars,
        )

    def daily_log_path(self, day: datetime) -> Path:
        return self.memory_dir / f"{day:%Y-%m-%d}.md"

    def append_daily_log(self, content: str, now: datetime | None = None) -> Path:
        """Append a timestamped entry to today's journal and return its path."""
        now = now or datetime.now()
        path = self.daily_log_path(now)
        entry = f"\n### {now:%H:%M}\n{content}\n"
        path.parent.mkdir(parents=True, exist_ok=True)
        if not path.exists():
            path.write_text(f"# {now:%Y-%m-%d} journal\n{entry}", encoding="utf-8")
        else:
            with path.open("a", encoding="utf-8") as f:
                f.write(entry)
        log.debug("Journal entry appended", path=str(path))
        return path

    def append_session_log(
        self,
        workspace: str,
        role: Literal["user", "assistant"],
        content: str,
        model: str | None = None,
        now: datetime | None = None,
    ) -> Path:
        """Append one JSON line describing a chat turn."""
        now = now or datetime.now(UTC)
        path = self.sessions_dir / f"{now:%Y-%m-%d}.jsonl"
        entry: dict[str, str] = {
            "ts": now.isoformat(),
            "workspace": workspace,
            "role": role,
            "content": content[: self.session_content_chars],
        }
        if model:
            entry["model"] = model
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        return path

    def recent_summary(self, days: int = 2, now: datetime | None = None) -> str:
        """Recent daily notes plus long-term memory, newest first."""
        now = now or datetime.now()
        parts: list[str] = []
        for offset in range(max(0, int(days))):
            path = self.daily_log_path(now - timedelta(days=offset))
            if path.exists():
                content = path.read_text(encoding="utf-8", errors="replace")
                parts.append(f"## {path.name}\n{content[: self.daily_chars]}")

        long_term = self.workspace_path / LONG_TERM_FILENAME
        if long_term.exists():
            content = long_term.read_text(encoding="utf-8", errors="replace")
            if len(content.strip()) > _LONG_TERM_MIN_CHARS:
                parts.append(f"## {LONG_TERM_FILENAME} (long-term memory)\n{content[: self.long_term_chars]}")

        return "\n\n".join(parts)
