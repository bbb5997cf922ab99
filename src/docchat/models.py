"""Core docchat data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import numpy as np


@dataclass(slots=True, frozen=True)
class SourceFile:
    """A supported file found under the corpus root."""

    path: Path
    category: str
    extension: str

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(slots=True, frozen=True)
class Fingerprint:
    """Cheap proxy for "this file has not changed since the last build"."""

    path: Path
    size: int
    mtime_ms: int
    digest: str | None = None

    @property
    def token(self) -> str:
        """Opaque string form stored in the cache manifest."""
        if self.digest is not None:
            return f"sha256:{self.digest}"
        return f"{self.path.name}|{self.size}|{self.mtime_ms}"


@dataclass(slots=True)
class RawSegment:
    """Text read from a file before chunking."""

    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class DocumentChunk:
    """Bounded span of a document, the unit of embedding and retrieval."""

    text: str
    category: str
    filename: str
    source_path: str
    chunk_index: int
    start_index: int = 0
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def chunk_id(self) -> str:
        return f"{self.source_path}::{self.chunk_index}"

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            **self.extra,
            "category": self.category,
            "filename": self.filename,
            "source_path": self.source_path,
            "chunk_index": self.chunk_index,
            "start_index": self.start_index,
        }

    @classmethod
    def from_metadata(cls, text: str, metadata: Dict[str, Any]) -> "DocumentChunk":
        data = dict(metadata)
        return cls(
            text=text,
            category=str(data.pop("category", "")),
            filename=str(data.pop("filename", "")),
            source_path=str(data.pop("source_path", "")),
            chunk_index=int(data.pop("chunk_index", 0)),
            start_index=int(data.pop("start_index", 0)),
            extra=data,
        )


@dataclass(slots=True)
class EmbeddedChunk:
    """Chunk paired with its embedding vector."""

    chunk: DocumentChunk
    vector: np.ndarray


@dataclass(slots=True)
class ScoredChunk:
    """One retrieval hit."""

    chunk: DocumentChunk
    score: float
