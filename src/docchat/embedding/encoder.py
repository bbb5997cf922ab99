"""Embedding providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from docchat.errors import EmbeddingServiceError

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns texts into vectors, one per text, in order.

    Implementations raise ``EmbeddingServiceError`` when the provider fails.
    """

    def embed(self, texts: Sequence[str]) -> Sequence[np.ndarray]: ...


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class SentenceTransformerEmbedder:
    """Local `SentenceTransformer` model behind the ``Embedder`` interface.

    A non-torch backend that fails to load falls back to torch.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        try:
            self._model = self._load_model()
        except Exception as exc:
            if self.config.backend == "torch":
                raise EmbeddingServiceError(
                    f"Could not load embedding model {self.config.model_name}: {exc}"
                ) from exc
            logger.warning(
                "Failed to load %s with backend %r (%s), falling back to torch",
                self.config.model_name,
                self.config.backend,
                exc,
            )
            self.config.backend = "torch"
            try:
                self._model = self._load_model()
            except Exception as fallback_exc:
                raise EmbeddingServiceError(
                    f"Could not load embedding model {self.config.model_name}: {fallback_exc}"
                ) from fallback_exc
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Embedding model %s ready (backend=%s, dim=%d)",
            self.config.model_name,
            self.config.backend,
            self.dimension,
        )

    def _load_model(self) -> SentenceTransformer:
        return SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
        )

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Return float32 embeddings, one row per text."""
        sentences = list(texts)
        if not sentences:
            return np.zeros((0, self.dimension), dtype="float32")
        try:
            embeddings = self._model.encode(
                sentences,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise EmbeddingServiceError(f"Embedding failed: {exc}") from exc
        return embeddings.astype("float32", copy=False)
