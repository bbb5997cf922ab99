"""Tests for the vector stores."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import numpy as np
import pytest

from docchat.errors import BackendError, BackendUnavailable
from docchat.index.storage import (
    AttachResult,
    ChromaVectorStore,
    InMemoryVectorStore,
    choose_store,
)
from docchat.models import DocumentChunk


def _chunk(index: int, text: str = "text", source: str = "/docs/a.txt") -> DocumentChunk:
    return DocumentChunk(
        text=text,
        category=".",
        filename="a.txt",
        source_path=source,
        chunk_index=index,
    )


@pytest.fixture
def memory_store() -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    store.upsert(
        [_chunk(0, "x axis"), _chunk(1, "y axis"), _chunk(2, "diagonal")],
        [
            np.array([1.0, 0.0], dtype="float32"),
            np.array([0.0, 1.0], dtype="float32"),
            np.array([1.0, 1.0], dtype="float32"),
        ],
    )
    return store


class TestInMemoryVectorStore:
    """Exhaustive cosine search."""

    def test_results_sorted_by_score(self, memory_store: InMemoryVectorStore) -> None:
        hits = memory_store.search(np.array([1.0, 0.1]), k=3)

        assert [hit.chunk.text for hit in hits] == ["x axis", "diagonal", "y axis"]
        assert hits[0].score >= hits[1].score >= hits[2].score

    def test_k_bounds_results(self, memory_store: InMemoryVectorStore) -> None:
        assert len(memory_store.search(np.array([1.0, 0.0]), k=2)) == 2
        assert len(memory_store.search(np.array([1.0, 0.0]), k=10)) == 3

    def test_single_chunk_returned_for_any_query(self) -> None:
        store = InMemoryVectorStore()
        store.upsert([_chunk(0, "only")], [np.array([0.0, 1.0])])

        hits = store.search(np.array([1.0, 0.0]), k=6)

        assert [hit.chunk.text for hit in hits] == ["only"]

    def test_ties_keep_insertion_order(self) -> None:
        store = InMemoryVectorStore()
        store.upsert(
            [_chunk(0, "first"), _chunk(1, "second"), _chunk(2, "third")],
            [np.array([1.0, 0.0])] * 3,
        )

        hits = store.search(np.array([1.0, 0.0]), k=3)

        assert [hit.chunk.text for hit in hits] == ["first", "second", "third"]

    def test_empty_store_returns_nothing(self) -> None:
        assert InMemoryVectorStore().search(np.array([1.0]), k=3) == []

    def test_zero_vector_does_not_divide_by_zero(self) -> None:
        store = InMemoryVectorStore()
        store.upsert([_chunk(0)], [np.zeros(2)])

        hits = store.search(np.array([1.0, 0.0]), k=1)

        assert hits[0].score == 0.0

    def test_invalid_k(self, memory_store: InMemoryVectorStore) -> None:
        with pytest.raises(ValueError):
            memory_store.search(np.array([1.0, 0.0]), k=0)

    def test_query_dimension_mismatch(self, memory_store: InMemoryVectorStore) -> None:
        with pytest.raises(ValueError):
            memory_store.search(np.array([1.0, 0.0, 0.0]), k=1)

    def test_upsert_dimension_mismatch(self, memory_store: InMemoryVectorStore) -> None:
        with pytest.raises(ValueError):
            memory_store.upsert([_chunk(9)], [np.array([1.0, 0.0, 0.0])])

    def test_upsert_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            InMemoryVectorStore().upsert([_chunk(0), _chunk(1)], [np.array([1.0])])

    def test_upsert_replaces_same_chunk_id(self, memory_store: InMemoryVectorStore) -> None:
        memory_store.upsert([_chunk(0, "x axis v2")], [np.array([1.0, 0.0])])

        hits = memory_store.search(np.array([1.0, 0.0]), k=1)

        assert memory_store.count() == 3
        assert hits[0].chunk.text == "x axis v2"

    def test_reset_empties_store(self, memory_store: InMemoryVectorStore) -> None:
        memory_store.reset()

        assert memory_store.count() == 0
        assert memory_store.search(np.array([1.0, 0.0]), k=1) == []

    def test_not_persistent(self) -> None:
        store = InMemoryVectorStore()

        assert store.persistent is False
        assert store.is_available() is True


@pytest.fixture
def chroma_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def collection(chroma_client: MagicMock) -> MagicMock:
    collection = MagicMock()
    chroma_client.get_or_create_collection.return_value = collection
    return collection


class TestChromaVectorStore:
    """Chroma-backed store with a mocked client."""

    def test_opens_cosine_collection(self, chroma_client: MagicMock, collection: MagicMock) -> None:
        ChromaVectorStore(chroma_client, "docchat")

        chroma_client.get_or_create_collection.assert_called_once_with(
            name="docchat", metadata={"hnsw:space": "cosine"}
        )

    def test_upsert_sends_ids_vectors_and_metadata(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        store = ChromaVectorStore(chroma_client, "docchat")
        chunk = DocumentChunk(
            text="Cats purr.",
            category="animals",
            filename="cats.txt",
            source_path="/docs/animals/cats.txt",
            chunk_index=0,
            extra={"page": 2, "tags": ["dropped"]},
        )

        store.upsert([chunk], [np.array([0.5, 0.5])])

        kwargs = collection.upsert.call_args.kwargs
        assert kwargs["ids"] == ["/docs/animals/cats.txt::0"]
        assert kwargs["embeddings"] == [[0.5, 0.5]]
        assert kwargs["documents"] == ["Cats purr."]
        assert kwargs["metadatas"][0]["page"] == 2
        assert "tags" not in kwargs["metadatas"][0]

    def test_upsert_empty_batch_is_noop(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        ChromaVectorStore(chroma_client, "docchat").upsert([], [])

        collection.upsert.assert_not_called()

    def test_search_maps_distances_to_scores(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        collection.query.return_value = {
            "documents": [["far", "near"]],
            "metadatas": [
                [
                    {"category": ".", "filename": "a.txt", "source_path": "/a", "chunk_index": 1},
                    {"category": ".", "filename": "a.txt", "source_path": "/a", "chunk_index": 0},
                ]
            ],
            "distances": [[0.75, 0.25]],
        }
        store = ChromaVectorStore(chroma_client, "docchat")

        hits = store.search(np.array([1.0, 0.0]), k=2)

        assert [hit.chunk.text for hit in hits] == ["near", "far"]
        assert hits[0].score == pytest.approx(0.75)
        assert hits[0].chunk.chunk_index == 0
        assert collection.query.call_args.kwargs["n_results"] == 2

    def test_malformed_response_is_backend_error(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        collection.query.return_value = {"documents": []}
        store = ChromaVectorStore(chroma_client, "docchat")

        with pytest.raises(BackendError):
            store.search(np.array([1.0]), k=1)

    def test_ragged_response_is_backend_error(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        collection.query.return_value = {
            "documents": [["a", "b"]],
            "metadatas": [[{}]],
            "distances": [[0.1, 0.2]],
        }
        store = ChromaVectorStore(chroma_client, "docchat")

        with pytest.raises(BackendError):
            store.search(np.array([1.0]), k=2)

    def test_connectivity_error_is_unavailable(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        collection.upsert.side_effect = httpx.ConnectError("refused")
        store = ChromaVectorStore(chroma_client, "docchat")

        with pytest.raises(BackendUnavailable):
            store.upsert([_chunk(0)], [np.array([1.0])])

    def test_other_error_is_backend_error(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        collection.count.side_effect = RuntimeError("boom")
        store = ChromaVectorStore(chroma_client, "docchat")

        with pytest.raises(BackendError):
            store.count()

    def test_reset_recreates_collection(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        store = ChromaVectorStore(chroma_client, "docchat")

        store.reset()

        chroma_client.delete_collection.assert_called_once_with("docchat")
        assert chroma_client.get_or_create_collection.call_count == 2

    def test_reset_tolerates_missing_collection(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        chroma_client.delete_collection.side_effect = ValueError("does not exist")
        store = ChromaVectorStore(chroma_client, "docchat")

        store.reset()

        assert chroma_client.get_or_create_collection.call_count == 2

    def test_is_available_uses_heartbeat(
        self, chroma_client: MagicMock, collection: MagicMock
    ) -> None:
        store = ChromaVectorStore(chroma_client, "docchat")
        assert store.is_available() is True

        chroma_client.heartbeat.side_effect = ConnectionError("down")
        assert store.is_available() is False


class TestAttach:
    """Connecting to the Chroma server."""

    def test_attach_success(self, chroma_client: MagicMock, collection: MagicMock) -> None:
        factory = MagicMock(return_value=chroma_client)

        result = ChromaVectorStore.attach("db", 9000, "docchat", client_factory=factory)

        factory.assert_called_once_with(host="db", port=9000)
        assert result.ok
        assert isinstance(result.store, ChromaVectorStore)

    def test_attach_client_creation_fails(self) -> None:
        factory = MagicMock(side_effect=ValueError("Could not connect to a Chroma server"))

        result = ChromaVectorStore.attach("db", 9000, "docchat", client_factory=factory)

        assert not result.ok
        assert isinstance(result.error, BackendUnavailable)

    def test_attach_heartbeat_fails(self, chroma_client: MagicMock) -> None:
        chroma_client.heartbeat.side_effect = httpx.ConnectTimeout("timed out")

        result = ChromaVectorStore.attach(
            "db", 9000, "docchat", client_factory=lambda **_: chroma_client
        )

        assert result.store is None
        assert isinstance(result.error, BackendUnavailable)

    def test_attach_collection_unreachable(self, chroma_client: MagicMock) -> None:
        chroma_client.get_or_create_collection.side_effect = httpx.ReadTimeout("slow")

        result = ChromaVectorStore.attach(
            "db", 9000, "docchat", client_factory=lambda **_: chroma_client
        )

        assert not result.ok


class TestChooseStore:
    """Fallback selection."""

    def test_attached_store_is_used(self) -> None:
        store = InMemoryVectorStore()

        chosen, degraded = choose_store(AttachResult(store=store))

        assert chosen is store
        assert degraded is False

    def test_failure_falls_back_to_memory(self, caplog: pytest.LogCaptureFixture) -> None:
        chosen, degraded = choose_store(AttachResult(error=BackendUnavailable("down")))

        assert isinstance(chosen, InMemoryVectorStore)
        assert degraded is True
        assert "unavailable" in caplog.text
