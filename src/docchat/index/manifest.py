"""Cache manifest: the durable record of what the index was built from.

The manifest is a JSON object mapping each corpus file (relative to the
corpus root, posix separators) to its fingerprint token. It is the only state
the cache persists; the embeddings themselves live in the vector backend.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Mapping

from docchat.errors import CacheCorruptError
from docchat.models import SourceFile
from docchat.utils.files import fingerprint, manifest_key

LOGGER = logging.getLogger(__name__)

Manifest = Dict[str, str]


def load_manifest(path: Path) -> Manifest | None:
    """Read the manifest, or return ``None`` when there is none yet.

    Raises ``CacheCorruptError`` for unreadable or malformed content.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CacheCorruptError(f"Unreadable manifest {path}: {exc}") from exc
    if not isinstance(data, dict) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in data.items()
    ):
        raise CacheCorruptError(f"Manifest {path} is not a mapping of path to fingerprint")
    return data


def save_manifest(path: Path, file_hashes: Mapping[str, str]) -> None:
    """Replace the manifest atomically: write a sibling temp file, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(dict(sorted(file_hashes.items())), handle, indent=2, ensure_ascii=False)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    LOGGER.debug("Saved manifest %s (%d entries)", path, len(file_hashes))


def compute_file_hashes(
    files: Iterable[SourceFile], root: Path, *, mode: str = "fast"
) -> Manifest:
    """Fingerprint every file. Propagates ``OSError`` from unreadable files."""
    return {
        manifest_key(source.path, root): fingerprint(source.path, mode=mode).token
        for source in files
    }


def is_cache_valid(
    manifest_path: Path,
    files: Iterable[SourceFile],
    root: Path,
    *,
    mode: str = "fast",
) -> bool:
    """Whether the manifest describes exactly the current corpus.

    Every current file needs a matching entry and the manifest may not list
    files that are gone. Any doubt (missing or corrupt manifest, unreadable
    file) counts as invalid.
    """
    try:
        manifest = load_manifest(manifest_path)
    except CacheCorruptError as exc:
        LOGGER.warning("Ignoring corrupt cache manifest: %s", exc)
        return False
    if manifest is None:
        LOGGER.debug("No cache manifest at %s", manifest_path)
        return False

    try:
        current = compute_file_hashes(files, root, mode=mode)
    except OSError as exc:
        LOGGER.warning("Could not fingerprint corpus, rebuilding: %s", exc)
        return False

    if current.keys() != manifest.keys():
        added = sorted(current.keys() - manifest.keys())
        removed = sorted(manifest.keys() - current.keys())
        LOGGER.info("Corpus changed (added=%s removed=%s)", added, removed)
        return False
    changed = [key for key, token in current.items() if manifest[key] != token]
    if changed:
        LOGGER.info("Corpus changed (modified=%s)", changed)
        return False
    return True
