"""Vector stores: a Chroma server as the persistent backend, numpy in memory as fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Protocol, Sequence

import chromadb
import httpx
import numpy as np

from docchat.errors import BackendError, BackendUnavailable
from docchat.models import DocumentChunk, EmbeddedChunk, ScoredChunk

LOGGER = logging.getLogger(__name__)

_CONNECTIVITY_ERRORS = (httpx.TransportError, ConnectionError, TimeoutError)


class VectorStore(Protocol):
    name: str
    persistent: bool

    def upsert(self, chunks: Sequence[DocumentChunk], vectors: Sequence[np.ndarray]) -> None: ...

    def search(self, query_vector: np.ndarray, k: int) -> List[ScoredChunk]: ...

    def is_available(self) -> bool: ...

    def count(self) -> int: ...

    def reset(self) -> None: ...


def _check_batch(chunks: Sequence[DocumentChunk], vectors: Sequence[np.ndarray]) -> None:
    if len(chunks) != len(vectors):
        raise ValueError("Embeddings and chunks length mismatch")


def _check_k(k: int) -> None:
    if k < 1:
        raise ValueError("k must be at least 1")


class InMemoryVectorStore:
    """Ordered in-process collection searched exhaustively by cosine similarity."""

    name = "memory"
    persistent = False

    def __init__(self) -> None:
        self._entries: List[EmbeddedChunk] = []
        self._positions: Dict[str, int] = {}
        self._matrix: np.ndarray | None = None

    def upsert(self, chunks: Sequence[DocumentChunk], vectors: Sequence[np.ndarray]) -> None:
        _check_batch(chunks, vectors)
        for chunk, vector in zip(chunks, vectors):
            array = np.asarray(vector, dtype="float32").ravel()
            if self._entries and array.shape[0] != self._entries[0].vector.shape[0]:
                raise ValueError(
                    f"Vector dimension {array.shape[0]} does not match "
                    f"{self._entries[0].vector.shape[0]}"
                )
            entry = EmbeddedChunk(chunk=chunk, vector=array)
            position = self._positions.get(chunk.chunk_id)
            if position is None:
                self._positions[chunk.chunk_id] = len(self._entries)
                self._entries.append(entry)
            else:
                self._entries[position] = entry
        self._matrix = None

    def search(self, query_vector: np.ndarray, k: int) -> List[ScoredChunk]:
        _check_k(k)
        if not self._entries:
            return []
        query = np.asarray(query_vector, dtype="float32").ravel()
        if self._matrix is None:
            self._matrix = np.vstack([entry.vector for entry in self._entries])
        if query.shape[0] != self._matrix.shape[1]:
            raise ValueError(
                f"Query dimension {query.shape[0]} does not match {self._matrix.shape[1]}"
            )

        norms = np.linalg.norm(self._matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        scores = (self._matrix @ query) / norms
        # Stable sort keeps insertion order among equal scores.
        order = np.argsort(-scores, kind="stable")[:k]
        return [ScoredChunk(chunk=self._entries[i].chunk, score=float(scores[i])) for i in order]

    def is_available(self) -> bool:
        return True

    def count(self) -> int:
        return len(self._entries)

    def reset(self) -> None:
        self._entries.clear()
        self._positions.clear()
        self._matrix = None


def _clean_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    # Chroma only stores scalar metadata values.
    return {
        key: value
        for key, value in metadata.items()
        if isinstance(value, (str, int, float, bool))
    }


class ChromaVectorStore:
    """Collection on a Chroma server, reached over HTTP."""

    name = "chroma"
    persistent = True

    def __init__(self, client: Any, collection_name: str) -> None:
        self.client = client
        self.collection_name = collection_name
        self._collection = self._call(self._open_collection)

    def _open_collection(self):
        return self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except _CONNECTIVITY_ERRORS as exc:
            raise BackendUnavailable(f"Chroma unreachable: {exc}") from exc
        except (BackendError, BackendUnavailable):
            raise
        except Exception as exc:
            raise BackendError(f"Chroma request failed: {exc}") from exc

    def upsert(self, chunks: Sequence[DocumentChunk], vectors: Sequence[np.ndarray]) -> None:
        _check_batch(chunks, vectors)
        if not chunks:
            return
        self._call(
            self._collection.upsert,
            ids=[chunk.chunk_id for chunk in chunks],
            embeddings=[np.asarray(vector, dtype="float32").tolist() for vector in vectors],
            documents=[chunk.text for chunk in chunks],
            metadatas=[_clean_metadata(chunk.metadata) for chunk in chunks],
        )

    def search(self, query_vector: np.ndarray, k: int) -> List[ScoredChunk]:
        _check_k(k)
        response = self._call(
            self._collection.query,
            query_embeddings=[np.asarray(query_vector, dtype="float32").tolist()],
            n_results=k,
            include=["documents", "metadatas", "distances"],
        )
        try:
            documents = response["documents"][0]
            metadatas = response["metadatas"][0]
            distances = response["distances"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise BackendError(f"Malformed Chroma query response: {exc}") from exc
        if not (len(documents) == len(metadatas) == len(distances)):
            raise BackendError("Malformed Chroma query response: ragged result lists")

        results = [
            ScoredChunk(
                chunk=DocumentChunk.from_metadata(text or "", metadata or {}),
                score=1.0 - float(distance),
            )
            for text, metadata, distance in zip(documents, metadatas, distances)
        ]
        results.sort(key=lambda hit: hit.score, reverse=True)
        return results[:k]

    def is_available(self) -> bool:
        try:
            self.client.heartbeat()
        except Exception as exc:
            LOGGER.debug("Chroma heartbeat failed: %s", exc)
            return False
        return True

    def count(self) -> int:
        return int(self._call(self._collection.count))

    def reset(self) -> None:
        """Drop and recreate the collection so a rebuild starts empty."""
        try:
            self._call(self.client.delete_collection, self.collection_name)
        except BackendError:
            LOGGER.debug("Collection %s did not exist", self.collection_name)
        self._collection = self._call(self._open_collection)

    @classmethod
    def attach(
        cls,
        host: str,
        port: int,
        collection_name: str,
        *,
        client_factory: Callable[..., Any] | None = None,
    ) -> "AttachResult":
        """Connect to the server and open the collection.

        Connectivity problems come back as a failed ``AttachResult``; a server
        that answers with garbage still raises ``BackendError``.
        """
        factory = client_factory or chromadb.HttpClient
        try:
            client = factory(host=host, port=port)
            client.heartbeat()
        except Exception as exc:
            return AttachResult(error=BackendUnavailable(f"Chroma at {host}:{port}: {exc}"))
        try:
            store = cls(client, collection_name)
        except BackendUnavailable as exc:
            return AttachResult(error=exc)
        LOGGER.info("Attached to Chroma collection %r at %s:%s", collection_name, host, port)
        return AttachResult(store=store)


@dataclass(slots=True)
class AttachResult:
    """Outcome of trying to reach the persistent backend."""

    store: VectorStore | None = None
    error: BackendUnavailable | None = None

    @property
    def ok(self) -> bool:
        return self.store is not None and self.error is None


def choose_store(result: AttachResult) -> tuple[VectorStore, bool]:
    """Pick the store for this process: the attached backend, or memory.

    Returns ``(store, degraded)``.
    """
    if result.ok:
        return result.store, False
    LOGGER.warning(
        "Persistent vector backend unavailable (%s); serving from memory for this process",
        result.error,
    )
    return InMemoryVectorStore(), True
