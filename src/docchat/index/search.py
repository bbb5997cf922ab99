"""Semantic search interface."""

from __future__ import annotations

import asyncio
from typing import List

import numpy as np

from docchat.embedding.encoder import Embedder
from docchat.errors import EmbeddingServiceError
from docchat.index.storage import VectorStore
from docchat.models import ScoredChunk


class Searcher:
    """Embed a query and rank the store's chunks against it."""

    def __init__(self, embedder: Embedder, store: VectorStore) -> None:
        self.embedder = embedder
        self.store = store

    async def embed_query(self, query: str) -> np.ndarray:
        vectors = await asyncio.to_thread(self.embedder.embed, [query])
        if len(vectors) != 1:
            raise EmbeddingServiceError(f"Expected 1 query vector, got {len(vectors)}")
        return np.asarray(vectors[0], dtype="float32")

    async def search(self, query: str, *, top_k: int = 6) -> List[ScoredChunk]:
        embedding = await self.embed_query(query)
        return await asyncio.to_thread(self.store.search, embedding, top_k)
