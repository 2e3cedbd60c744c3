"""Record types shared by the store, indexer and searcher."""

from __future__ import annotations

from array import array
from collections.abc import Sequence
from dataclasses import dataclass, field
import math
import sys
from typing import Any

from relay_memory.exceptions import ValidationError


def pack_vector(vector: Sequence[float]) -> bytes:
    """Serialize a vector as little-endian float32."""
    packed = array("f", (float(v) for v in vector))
    if sys.byteorder != "little":
        packed.byteswap()
    return packed.tobytes()


def unpack_vector(blob: bytes) -> tuple[float, ...]:
    """Inverse of `pack_vector`."""
    if len(blob) % 4:
        raise ValidationError(f"Embedding blob length {len(blob)} is not a multiple of 4")
    values = array("f")
    values.frombytes(bytes(blob))
    if sys.byteorder != "little":
        values.byteswap()
    return tuple(values)


@dataclass(frozen=True)
class Embedded:
    """Chunk has a vector."""

    vector: tuple[float, ...]

    def __post_init__(self) -> None:
        if not self.vector:
            raise ValidationError("Embedded vector must not be empty")
        if not all(math.isfinite(v) for v in self.vector):
            raise ValidationError("Embedded vector contains non-finite values")


@dataclass(frozen=True)
class Missing:
    """Chunk has no vector; it is only reachable through lexical search."""

    reason: str = ""


ChunkEmbedding = Embedded | Missing


def embedding_from_blob(blob: bytes | None) -> ChunkEmbedding:
    if blob is None:
        return Missing("not embedded")
    return Embedded(unpack_vector(blob))


@dataclass(frozen=True)
class FileRecord:
    """One indexed file."""

    path: str
    content_hash: str
    size: int

    def __post_init__(self) -> None:
        if not self.path:
            raise ValidationError("File path must not be empty")
        if not self.content_hash:
            raise ValidationError(f"File {self.path} has an empty content hash")
        if self.size < 0:
            raise ValidationError(f"File {self.path} has negative size {self.size}")

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> FileRecord:
        """Build from a `(path, hash, size)` row."""
        return cls(path=str(row[0]), content_hash=str(row[1]), size=int(row[2] or 0))


@dataclass(frozen=True)
class ChunkRecord:
    """A contiguous line range of one file."""

    id: str
    path: str
    text: str
    start_line: int
    end_line: int
    content_hash: str
    embedding: ChunkEmbedding = field(default_factory=Missing)

    def __post_init__(self) -> None:
        if not self.id or not self.path:
            raise ValidationError("Chunk id and path must not be empty")
        if self.start_line < 1 or self.start_line > self.end_line:
            raise ValidationError(
                f"Chunk {self.id} has invalid line range {self.start_line}-{self.end_line}"
            )

    @staticmethod
    def make_id(path: str, start_line: int, end_line: int) -> str:
        return f"{path}:{start_line}-{end_line}"

    @property
    def vector(self) -> tuple[float, ...] | None:
        if isinstance(self.embedding, Embedded):
            return self.embedding.vector
        return None

    def with_embedding(self, embedding: ChunkEmbedding) -> ChunkRecord:
        return ChunkRecord(
            id=self.id,
            path=self.path,
            text=self.text,
            start_line=self.start_line,
            end_line=self.end_line,
            content_hash=self.content_hash,
            embedding=embedding,
        )

    def embedding_blob(self) -> bytes | None:
        if isinstance(self.embedding, Embedded):
            return pack_vector(self.embedding.vector)
        return None

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> ChunkRecord:
        """Build from an `(id, path, text, start_line, end_line, hash, embedding)` row."""
        return cls(
            id=str(row[0]),
            path=str(row[1]),
            text=str(row[2]),
            start_line=int(row[3]),
            end_line=int(row[4]),
            content_hash=str(row[5] or ""),
            embedding=embedding_from_blob(row[6]),
        )


@dataclass(frozen=True)
class CacheEntry:
    """Embedding cache row keyed by (content_hash, model_id)."""

    content_hash: str
    model_id: str
    vector: tuple[float, ...]

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> CacheEntry:
        return cls(content_hash=str(row[0]), model_id=str(row[1]), vector=unpack_vector(row[2]))


@dataclass
class SearchResult:
    """One hybrid search hit."""

    path: str
    text: str
    score: float
    start_line: int
    end_line: int
    vector_score: float = 0.0
    keyword_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "text": self.text,
            "score": self.score,
            "startLine": self.start_line,
            "endLine": self.end_line,
        }


@dataclass
class IndexStats:
    """Index statistics."""

    chunk_count: int
    file_count: int
    cached_embedding_count: int
    file_paths: list[str] = field(default_factory=list)
