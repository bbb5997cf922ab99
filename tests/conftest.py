"""Shared test doubles for docchat tests."""

from __future__ import annotations

import re
import threading
import time
import zlib
from pathlib import Path
from typing import List, Sequence

import numpy as np
import pytest

from docchat.config import AppConfig
from docchat.index.storage import AttachResult, InMemoryVectorStore


class KeywordEmbedder:
    """Deterministic bag-of-words embedder that records every call."""

    def __init__(self, dimension: int = 64, delay: float = 0.0) -> None:
        self.dimension = dimension
        self.delay = delay
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype="float32")
        for word in re.findall(r"[a-z]+", text.lower()):
            vector[zlib.crc32(word.encode("utf-8")) % self.dimension] += 1.0
        return vector

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append(list(texts))
        if not texts:
            return np.zeros((0, self.dimension), dtype="float32")
        return np.vstack([self._vector(text) for text in texts])

    @property
    def embedded_texts(self) -> List[str]:
        return [text for call in self.calls for text in call]


class PersistentMemoryStore(InMemoryVectorStore):
    """In-memory store that claims to be persistent, standing in for a server."""

    name = "fake-persistent"
    persistent = True


class EchoGenerator:
    """Returns the prompt it was given."""

    def __init__(self) -> None:
        self.calls: List[tuple[str, str]] = []

    def complete(self, prompt_context: str, question: str) -> str:
        self.calls.append((prompt_context, question))
        return f"{prompt_context}\n---\n{question}"


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    root = tmp_path / "docs"
    (root / "animals" / "pets").mkdir(parents=True)
    (root / "animals" / "pets" / "cats.txt").write_text(
        "Cats are mammals. Cats purr.", encoding="utf-8"
    )
    (root / "space.txt").write_text("The moon orbits the earth.", encoding="utf-8")
    (root / "notes.md").write_text("ignored", encoding="utf-8")
    return root


@pytest.fixture
def config(corpus: Path) -> AppConfig:
    return AppConfig(corpus_root=corpus, chunk_size=200, chunk_overlap=20, backend="memory")


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def persistent_store() -> PersistentMemoryStore:
    return PersistentMemoryStore()


@pytest.fixture
def attach_persistent(persistent_store: PersistentMemoryStore):
    return lambda: AttachResult(store=persistent_store)
