"""Utility helpers for working with files."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Iterable, Iterator

from docchat.models import Fingerprint, SourceFile

SUPPORTED_EXTENSIONS = frozenset({".txt", ".pdf"})


def category_for(path: Path, root: Path) -> str:
    """Containing directory of ``path`` relative to ``root``, "/"-joined."""
    return path.relative_to(root).parent.as_posix()


def iter_source_files(
    root: Path, extensions: Iterable[str] = SUPPORTED_EXTENSIONS
) -> Iterator[SourceFile]:
    """Yield supported files under ``root``, descending into directories.

    Unsupported extensions are skipped silently.
    """
    allowed = {ext.lower() for ext in extensions}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            path = Path(dirpath) / name
            extension = path.suffix.lower()
            if extension not in allowed or not path.is_file():
                continue
            yield SourceFile(path=path, category=category_for(path, root), extension=extension)


def scan(root: Path) -> list[SourceFile]:
    if not root.is_dir():
        raise FileNotFoundError(f"Corpus root is not a directory: {root}")
    return list(iter_source_files(root))


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            sha.update(chunk)
    return sha.hexdigest()


def fingerprint(path: Path, *, mode: str = "fast") -> Fingerprint:
    """Fingerprint a file from its metadata, or its bytes in ``content`` mode.

    Raises ``OSError`` when the file cannot be read.
    """
    stat = path.stat()
    digest = compute_sha256(path) if mode == "content" else None
    return Fingerprint(
        path=path,
        size=stat.st_size,
        mtime_ms=stat.st_mtime_ns // 1_000_000,
        digest=digest,
    )


def manifest_key(path: Path, root: Path) -> str:
    return path.relative_to(root).as_posix()
