"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

from docchat.embedding.encoder import DEFAULT_MODEL

MANIFEST_NAME = ".docchat-manifest.json"
ENV_PREFIX = "DOCCHAT_"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "y", "on")


@dataclass(slots=True)
class AppConfig:
    corpus_root: Path = Path("docs")
    manifest_name: str = MANIFEST_NAME
    collection_name: str = "docchat"
    model_name: str = DEFAULT_MODEL
    chunk_size: int = 200
    chunk_overlap: int = 20
    top_k: int = 6
    load_concurrency: int = 3
    embed_concurrency: int = 4
    embed_batch_size: int = 64
    keep_whole_pdf: bool = False
    fingerprint_mode: Literal["fast", "content"] = "fast"
    history_aware_retrieval: bool = False
    history_window: int = 2
    backend: Literal["chroma", "memory"] = "chroma"
    chroma_host: str = "localhost"
    chroma_port: int = 8000

    def __post_init__(self) -> None:
        self.corpus_root = Path(self.corpus_root)

    def resolve_corpus_root(self, base_dir: Path | None = None) -> Path:
        if self.corpus_root.is_absolute() or base_dir is None:
            return self.corpus_root
        return base_dir / self.corpus_root

    def resolve_manifest_path(self, base_dir: Path | None = None) -> Path:
        return self.resolve_corpus_root(base_dir) / self.manifest_name

    def validate(self) -> "AppConfig":
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        if self.top_k < 1:
            raise ValueError("top_k must be at least 1")
        if self.load_concurrency < 1 or self.embed_concurrency < 1:
            raise ValueError("concurrency limits must be at least 1")
        if self.embed_batch_size < 1:
            raise ValueError("embed_batch_size must be at least 1")
        if self.fingerprint_mode not in ("fast", "content"):
            raise ValueError(f"Unknown fingerprint mode: {self.fingerprint_mode}")
        if self.backend not in ("chroma", "memory"):
            raise ValueError(f"Unknown backend: {self.backend}")
        if self.history_window < 0:
            raise ValueError("history_window must not be negative")
        return self

    @classmethod
    def from_env(cls, **overrides) -> "AppConfig":
        """Build a config from ``DOCCHAT_*`` variables, then apply ``overrides``."""
        load_dotenv()
        values = {}
        for spec in fields(cls):
            raw = os.getenv(ENV_PREFIX + spec.name.upper())
            if raw is None or raw == "":
                continue
            default = getattr(cls(), spec.name)
            if isinstance(default, bool):
                values[spec.name] = _parse_bool(raw)
            elif isinstance(default, int):
                values[spec.name] = int(raw)
            elif isinstance(default, Path):
                values[spec.name] = Path(raw)
            else:
                values[spec.name] = raw
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values).validate()


@dataclass(slots=True)
class GeneratorConfig:
    """Azure OpenAI chat deployment settings."""

    endpoint: str = ""
    api_key: str = ""
    api_version: str = ""
    deployment: str = ""
    model: str = "gpt-4o"
    temperature: float = 1.0
    max_retries: int = 2

    @classmethod
    def from_env(cls) -> "GeneratorConfig":
        load_dotenv()
        return cls(
            endpoint=os.getenv("AZURE_OPENAI_ENDPOINT", ""),
            api_key=os.getenv("AZURE_OPENAI_API_KEY", ""),
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", ""),
            deployment=os.getenv("AZURE_OPENAI_API_DEPLOYMENT_NAME", ""),
        )
