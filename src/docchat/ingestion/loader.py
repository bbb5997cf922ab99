"""Document loading: turn corpus files into raw text segments.

PDFs are read with PyMuPDF (fitz). Loading fans out across files with a
fixed concurrency cap; one file failing only drops that file.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Sequence

import fitz  # PyMuPDF

from docchat.errors import UnsupportedFileError
from docchat.models import RawSegment, SourceFile
from docchat.utils.concurrency import bounded_gather
from docchat.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)

DEFAULT_LOAD_CONCURRENCY = 3


@dataclass(slots=True)
class LoadReport:
    segments: List[RawSegment] = field(default_factory=list)
    loaded: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def iter_pdf_pages(path: Path) -> Iterator[tuple[int, str]]:
    """Yield ``(page_number, text)`` for each non-empty page of a PDF."""
    doc = fitz.open(path)
    try:
        for index in range(len(doc)):
            text = normalize_whitespace((doc[index].get_text() or "").splitlines())
            if text:
                yield index + 1, text
    finally:
        doc.close()


def _base_metadata(source: SourceFile) -> dict:
    return {
        "category": source.category,
        "filename": source.filename,
        "source_path": str(source.path),
    }


def load_file(source: SourceFile, *, keep_whole_pdf: bool = False) -> List[RawSegment]:
    """Read one file into segments stamped with category and filename.

    Text files give one segment. PDFs give one per page, or a single segment
    when ``keep_whole_pdf`` is set.
    """
    metadata = _base_metadata(source)
    if source.extension == ".txt":
        text = source.path.read_text(encoding="utf-8")
        return [RawSegment(text=text, metadata=metadata)] if text.strip() else []

    if source.extension == ".pdf":
        pages = list(iter_pdf_pages(source.path))
        if keep_whole_pdf:
            text = "\n\n".join(page_text for _, page_text in pages)
            return [RawSegment(text=text, metadata=metadata)] if text else []
        return [
            RawSegment(text=page_text, metadata={**metadata, "page": number})
            for number, page_text in pages
        ]

    raise UnsupportedFileError(f"No loader for {source.extension} files: {source.path}")


async def load_corpus(
    files: Sequence[SourceFile],
    *,
    concurrency: int = DEFAULT_LOAD_CONCURRENCY,
    keep_whole_pdf: bool = False,
) -> LoadReport:
    """Load ``files`` with at most ``concurrency`` reads in flight."""

    async def _load(source: SourceFile) -> List[RawSegment]:
        return await asyncio.to_thread(load_file, source, keep_whole_pdf=keep_whole_pdf)

    results = await bounded_gather(_load, files, limit=concurrency, return_exceptions=True)

    report = LoadReport()
    for source, result in zip(files, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            LOGGER.error("Failed to load %s: %s", source.path, result)
            report.skipped.append(source.path)
            continue
        report.segments.extend(result)
        report.loaded.append(source.path)

    if report.skipped:
        LOGGER.warning("Skipped %d of %d files", report.skipped_count, len(files))
    LOGGER.info("Loaded %d segments from %d files", len(report.segments), len(report.loaded))
    return report
