"""Index initialization: scan, load, chunk, embed and store, gated by the cache manifest."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from docchat.config import AppConfig
from docchat.embedding.encoder import Embedder
from docchat.errors import BackendUnavailable, EmbeddingServiceError, PipelineFailedError
from docchat.index.manifest import is_cache_valid, save_manifest
from docchat.index.storage import (
    AttachResult,
    ChromaVectorStore,
    InMemoryVectorStore,
    VectorStore,
    choose_store,
)
from docchat.ingestion.loader import load_corpus
from docchat.models import DocumentChunk, SourceFile
from docchat.utils.concurrency import SingleFlight, bounded_gather
from docchat.utils.files import fingerprint, manifest_key, scan
from docchat.utils.text import split_segments

LOGGER = logging.getLogger(__name__)

AttachBackend = Callable[[], AttachResult]


class PipelineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    BACKEND_ATTACH = "backend_attach"
    CACHE_MISS = "cache_miss"
    SCANNING = "scanning"
    LOADING = "loading"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    READY = "ready"
    FAILED = "failed"


@dataclass(slots=True)
class IndexReport:
    files: int = 0
    chunks: int = 0
    skipped: List[Path] = field(default_factory=list)
    cache_hit: bool = False
    backend: str = ""
    degraded: bool = False


class RetrievalPipeline:
    """Owns the index for the lifetime of the process.

    ``ensure_ready`` runs initialization at most once: concurrent callers share
    the in-flight run, later callers get the ready store, and after a failure
    every call raises ``PipelineFailedError``.
    """

    def __init__(
        self,
        config: AppConfig,
        embedder: Embedder,
        *,
        attach: AttachBackend | None = None,
        on_degraded: Callable[[BaseException], None] | None = None,
        base_dir: Path | None = None,
    ) -> None:
        self.config = config.validate()
        self.embedder = embedder
        self.root = config.resolve_corpus_root(base_dir)
        self.manifest_path = config.resolve_manifest_path(base_dir)
        if attach is None and config.backend == "chroma":
            attach = self._attach_chroma
        self._attach = attach
        self._on_degraded = on_degraded
        self._flight: SingleFlight[VectorStore] = SingleFlight()
        self._state = PipelineState.UNINITIALIZED
        self._store: Optional[VectorStore] = None
        self._error: Optional[BaseException] = None
        self.transitions: List[PipelineState] = [self._state]
        self.degraded = False
        self.report = IndexReport()

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def store(self) -> Optional[VectorStore]:
        return self._store

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    async def ensure_ready(self) -> VectorStore:
        if self._state is PipelineState.READY and self._store is not None:
            return self._store
        if self._state is PipelineState.FAILED:
            raise PipelineFailedError(f"Index initialization failed: {self._error}") from self._error
        return await self._flight.run(self._initialize)

    def _attach_chroma(self) -> AttachResult:
        return ChromaVectorStore.attach(
            self.config.chroma_host, self.config.chroma_port, self.config.collection_name
        )

    def _transition(self, state: PipelineState) -> None:
        LOGGER.debug("Pipeline %s -> %s", self._state.value, state.value)
        self._state = state
        self.transitions.append(state)

    def _mark_degraded(self, error: BaseException | None) -> None:
        self.degraded = True
        if self._on_degraded is not None:
            self._on_degraded(error or BackendUnavailable("persistent backend unavailable"))

    async def _initialize(self) -> VectorStore:
        try:
            store = await self._build()
        except Exception as exc:
            self._error = exc
            self._transition(PipelineState.FAILED)
            LOGGER.error("Index initialization failed: %s", exc)
            raise PipelineFailedError(f"Index initialization failed: {exc}") from exc
        self._store = store
        self._transition(PipelineState.READY)
        return store

    async def _attach_backend(self) -> AttachResult:
        if self._attach is None:
            return AttachResult(error=BackendUnavailable("no persistent backend configured"))
        try:
            return await asyncio.to_thread(self._attach)
        except BackendUnavailable as exc:
            return AttachResult(error=exc)

    async def _build(self) -> VectorStore:
        self._transition(PipelineState.CACHE_CHECK)
        files = await asyncio.to_thread(scan, self.root)
        valid = await asyncio.to_thread(
            is_cache_valid,
            self.manifest_path,
            files,
            self.root,
            mode=self.config.fingerprint_mode,
        )

        attached: AttachResult | None = None
        if valid and self._attach is not None:
            self._transition(PipelineState.CACHE_HIT)
            self._transition(PipelineState.BACKEND_ATTACH)
            attached = await self._attach_backend()
            if attached.ok:
                try:
                    count = await asyncio.to_thread(attached.store.count)
                except BackendUnavailable as exc:
                    attached = AttachResult(error=exc)
            if attached.ok:
                if count > 0:
                    self.report = IndexReport(
                        files=len(files), chunks=count, cache_hit=True, backend=attached.store.name
                    )
                    LOGGER.info("Cache hit: reusing %d chunks from %s", count, attached.store.name)
                    return attached.store
                LOGGER.warning(
                    "Cache manifest is current but collection %r is empty; rebuilding",
                    self.config.collection_name,
                )
            else:
                LOGGER.warning("Cache manifest is current but the backend is unreachable; rebuilding")

        self._transition(PipelineState.CACHE_MISS)
        return await self._rebuild(attached)

    async def _select_store(self, attached: AttachResult | None) -> Tuple[VectorStore, bool]:
        if self._attach is None:
            return InMemoryVectorStore(), False
        if attached is None:
            attached = await self._attach_backend()
        store, degraded = choose_store(attached)
        if degraded:
            self._mark_degraded(attached.error)
        return store, degraded

    async def _rebuild(self, attached: AttachResult | None) -> VectorStore:
        store, degraded = await self._select_store(attached)
        if store.persistent:
            # The old manifest must not vouch for a collection that is about to be emptied.
            await asyncio.to_thread(self.manifest_path.unlink, missing_ok=True)
            try:
                await asyncio.to_thread(store.reset)
            except BackendUnavailable as exc:
                store, degraded = choose_store(AttachResult(error=exc))
                self._mark_degraded(exc)

        self._transition(PipelineState.SCANNING)
        files = await asyncio.to_thread(scan, self.root)
        readable, file_hashes, unreadable = await asyncio.to_thread(self._fingerprint_all, files)
        LOGGER.info("Found %d supported files under %s", len(files), self.root)

        self._transition(PipelineState.LOADING)
        loaded = await load_corpus(
            readable,
            concurrency=self.config.load_concurrency,
            keep_whole_pdf=self.config.keep_whole_pdf,
        )

        self._transition(PipelineState.CHUNKING)
        chunks = split_segments(
            loaded.segments,
            chunk_size=self.config.chunk_size,
            overlap=self.config.chunk_overlap,
        )
        LOGGER.info("Split %d segments into %d chunks", len(loaded.segments), len(chunks))
        if not chunks:
            LOGGER.warning("No text to index under %s", self.root)

        self._transition(PipelineState.EMBEDDING)
        vectors = await self._embed(chunks)

        self._transition(PipelineState.PERSISTING)
        store, degraded = await self._persist(store, degraded, chunks, vectors)
        if store.persistent:
            indexed = {manifest_key(path, self.root) for path in loaded.loaded}
            manifest = {key: token for key, token in file_hashes.items() if key in indexed}
            await asyncio.to_thread(save_manifest, self.manifest_path, manifest)

        self.report = IndexReport(
            files=len(loaded.loaded),
            chunks=len(chunks),
            skipped=unreadable + loaded.skipped,
            cache_hit=False,
            backend=store.name,
            degraded=degraded,
        )
        LOGGER.info(
            "Indexed %d chunks from %d files into %s (%d skipped)",
            len(chunks),
            len(loaded.loaded),
            store.name,
            len(self.report.skipped),
        )
        return store

    def _fingerprint_all(
        self, files: Sequence[SourceFile]
    ) -> Tuple[List[SourceFile], Dict[str, str], List[Path]]:
        readable: List[SourceFile] = []
        hashes: Dict[str, str] = {}
        unreadable: List[Path] = []
        for source in files:
            try:
                token = fingerprint(source.path, mode=self.config.fingerprint_mode).token
            except OSError as exc:
                LOGGER.error("Cannot fingerprint %s: %s", source.path, exc)
                unreadable.append(source.path)
                continue
            readable.append(source)
            hashes[manifest_key(source.path, self.root)] = token
        return readable, hashes, unreadable

    async def _embed(self, chunks: Sequence[DocumentChunk]) -> List[np.ndarray]:
        size = self.config.embed_batch_size
        batches = [list(chunks[i : i + size]) for i in range(0, len(chunks), size)]

        async def _embed_batch(batch: List[DocumentChunk]) -> List[np.ndarray]:
            vectors = await asyncio.to_thread(self.embedder.embed, [chunk.text for chunk in batch])
            if len(vectors) != len(batch):
                raise EmbeddingServiceError(
                    f"Embedder returned {len(vectors)} vectors for {len(batch)} texts"
                )
            return list(vectors)

        results = await bounded_gather(_embed_batch, batches, limit=self.config.embed_concurrency)
        return [vector for batch in results for vector in batch]

    def _upsert_all(
        self,
        store: VectorStore,
        chunks: Sequence[DocumentChunk],
        vectors: Sequence[np.ndarray],
    ) -> None:
        size = self.config.embed_batch_size
        for start in range(0, len(chunks), size):
            store.upsert(chunks[start : start + size], vectors[start : start + size])

    async def _persist(
        self,
        store: VectorStore,
        degraded: bool,
        chunks: Sequence[DocumentChunk],
        vectors: Sequence[np.ndarray],
    ) -> Tuple[VectorStore, bool]:
        try:
            await asyncio.to_thread(self._upsert_all, store, chunks, vectors)
        except BackendUnavailable as exc:
            if not store.persistent:
                raise
            # Nothing has been served yet, so switching now keeps a single population.
            store, degraded = choose_store(AttachResult(error=exc))
            self._mark_degraded(exc)
            await asyncio.to_thread(self._upsert_all, store, chunks, vectors)
        return store, degraded
