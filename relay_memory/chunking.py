"""Line-based markdown-aware chunker and content hashing."""

from __future__ import annotations

import hashlib
import re

from relay_memory.models import ChunkRecord, Missing

DEFAULT_MAX_CHARS = 600
DEFAULT_OVERLAP_LINES = 3
DEFAULT_MIN_CHARS = 20

_HEADING_RE = re.compile(r"^#{1,3}\s")


def content_hash(value: str) -> str:
    """Stable digest used for file change detection and the embedding cache."""
    return hashlib.sha1(value.encode("utf-8", errors="ignore")).hexdigest()


def _visible_chars(text: str) -> int:
    return sum(1 for ch in text if not ch.isspace())


class Chunker:
    """Split file text into overlapping line-range chunks.

    A chunk is closed when a `#`/`##`/`###` heading starts while lines are
    buffered, or when the buffer grows past `max_chars` while holding more
    than `overlap + 1` lines. The next buffer is seeded with the last
    `overlap` lines of the closed chunk. Buffers with fewer than
    `min_chars` visible characters are never emitted; they keep growing.
    """

    def __init__(
        self,
        max_chars: int = DEFAULT_MAX_CHARS,
        overlap: int = DEFAULT_OVERLAP_LINES,
        min_chars: int = DEFAULT_MIN_CHARS,
    ):
        self.max_chars = max(1, int(max_chars))
        self.overlap = max(0, int(overlap))
        self.min_chars = max(1, int(min_chars))

    def chunk(self, text: str, path: str) -> list[ChunkRecord]:
        lines = text.split("\n")
        chunks: list[ChunkRecord] = []
        buf: list[str] = []
        start_line = 1
        seeded = 0

        def emit(lines_: list[str], start: int) -> None:
            body = "\n".join(lines_)
            end = start + len(lines_) - 1
            chunks.append(
                ChunkRecord(
                    id=ChunkRecord.make_id(path, start, end),
                    path=path,
                    text=body,
                    start_line=start,
                    end_line=end,
                    content_hash=content_hash(body),
                    embedding=Missing("pending"),
                )
            )

        def flush() -> None:
            nonlocal buf, start_line, seeded
            if len(buf) <= seeded or _visible_chars("\n".join(buf)) < self.min_chars:
                return
            emit(buf, start_line)
            keep = buf[-self.overlap :] if self.overlap else []
            start_line += len(buf) - len(keep)
            buf = list(keep)
            seeded = len(buf)

        for line in lines:
            if buf and _HEADING_RE.match(line):
                flush()
            buf.append(line)
            if len("\n".join(buf)) > self.max_chars and len(buf) > self.overlap + 1:
                flush()

        # A tail made only of overlap lines is already covered by the previous chunk.
        if len(buf) > seeded and _visible_chars("\n".join(buf)) >= self.min_chars:
            emit(buf, start_line)

        return chunks


def chunk_file(
    text: str,
    path: str,
    *,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap: int = DEFAULT_OVERLAP_LINES,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> list[ChunkRecord]:
    """Chunk one file's text with the given limits."""
    return Chunker(max_chars=max_chars, overlap=overlap, min_chars=min_chars).chunk(text, path)
