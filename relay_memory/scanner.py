"""Workspace walk that yields indexable text files."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import os
from pathlib import Path

from relay_memory.chunking import content_hash
from relay_memory.config import IndexingConfig
from relay_memory.logging import get_logger
from relay_memory.models import FileRecord

log = get_logger(__name__)


@dataclass(frozen=True)
class ScannedFile:
    """A decoded file that passed every scan filter."""

    path: str
    content: str
    content_hash: str
    size: int

    def record(self) -> FileRecord:
        return FileRecord(path=self.path, content_hash=self.content_hash, size=self.size)


class WorkspaceScanner:
    """Collect indexable files under a workspace root.

    Skips dot entries, deny-listed directories and filenames, files over
    `max_file_bytes`, empty files, unknown extensions and anything that is
    not valid UTF-8.
    """

    def __init__(
        self,
        workspace_path: Path,
        *,
        include_extensions: Iterable[str],
        exclude_dirs: Iterable[str],
        exclude_files: Iterable[str],
        max_file_bytes: int = 100 * 1024,
    ):
        self.workspace_path = Path(workspace_path).resolve()
        self.include_extensions = {
            ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in include_extensions
        }
        self.exclude_dirs = {value.strip() for value in exclude_dirs if value.strip()}
        self.exclude_files = {value.strip() for value in exclude_files if value.strip()}
        self.max_file_bytes = max(1, int(max_file_bytes))

    @classmethod
    def from_config(cls, workspace_path: Path, cfg: IndexingConfig) -> WorkspaceScanner:
        return cls(
            workspace_path,
            include_extensions=cfg.include_extensions,
            exclude_dirs=cfg.exclude_dirs,
            exclude_files=cfg.exclude_files,
            max_file_bytes=cfg.max_file_bytes,
        )

    def scan(self) -> dict[str, ScannedFile]:
        """Return relative POSIX path -> scanned file, in walk order."""
        found: dict[str, ScannedFile] = {}
        if not self.workspace_path.is_dir():
            log.warning("Workspace directory missing", path=str(self.workspace_path))
            return found
        for root, dirs, files in os.walk(self.workspace_path):
            dirs[:] = sorted(
                d for d in dirs if not d.startswith(".") and d not in self.exclude_dirs
            )
            for filename in sorted(files):
                scanned = self._read(Path(root) / filename)
                if scanned is not None:
                    found[scanned.path] = scanned
        return found

    def _read(self, file_path: Path) -> ScannedFile | None:
        name = file_path.name
        if name.startswith(".") or name in self.exclude_files:
            return None
        if file_path.suffix.lower() not in self.include_extensions:
            return None
        try:
            stat = file_path.stat()
        except OSError:
            return None
        if not file_path.is_file():
            return None
        if stat.st_size <= 0 or stat.st_size > self.max_file_bytes:
            return None
        try:
            content = file_path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError):
            return None
        if not content.strip():
            return None
        rel_path = file_path.relative_to(self.workspace_path).as_posix()
        return ScannedFile(
            path=rel_path,
            content=content,
            content_hash=content_hash(content),
            size=stat.st_size,
        )
