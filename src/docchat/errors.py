"""Exception taxonomy for the ingestion and answering pipeline."""

from __future__ import annotations


class DocChatError(Exception):
    """Base class for all docchat errors."""


class UnsupportedFileError(DocChatError):
    """Raised when a loader is asked for a file type it cannot read."""


class CacheCorruptError(DocChatError):
    """The cache manifest exists but cannot be parsed."""


class BackendUnavailable(DocChatError):
    """The persistent vector backend cannot be reached."""


class BackendError(DocChatError):
    """The persistent vector backend answered with something unusable."""


class EmbeddingServiceError(DocChatError):
    """The embedding provider failed."""


class GenerationServiceError(DocChatError):
    """The completion provider failed."""


class PipelineFailedError(DocChatError):
    """Initialization failed earlier in this process; the index is unusable."""
