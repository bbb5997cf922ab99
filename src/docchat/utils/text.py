"""Text helpers including separator-aware overlapping chunking."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from docchat.models import DocumentChunk, RawSegment

DEFAULT_SEPARATORS: Tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ", " ", "")

Span = Tuple[int, int]


def _pieces(text: str, start: int, end: int, separator: str) -> List[Span]:
    """Cut ``text[start:end]`` after every ``separator``, keeping it on the left."""
    if separator == "":
        return [(i, i + 1) for i in range(start, end)]
    spans: List[Span] = []
    cursor = start
    while cursor < end:
        found = text.find(separator, cursor, end)
        if found == -1:
            spans.append((cursor, end))
            break
        stop = found + len(separator)
        spans.append((cursor, stop))
        cursor = stop
    return spans


def _merge(spans: Sequence[Span], chunk_size: int, overlap: int) -> List[Span]:
    """Pack adjacent spans into windows of at most ``chunk_size`` characters.

    The tail of each window, up to ``overlap`` characters, opens the next one.
    """
    merged: List[Span] = []
    window: List[Span] = []
    total = 0
    for start, end in spans:
        size = end - start
        if window and total + size > chunk_size:
            merged.append((window[0][0], window[-1][1]))
            while window and (total > overlap or total + size > chunk_size):
                head = window.pop(0)
                total -= head[1] - head[0]
        window.append((start, end))
        total += size
    if window:
        merged.append((window[0][0], window[-1][1]))
    return merged


def _split_spans(
    text: str,
    start: int,
    end: int,
    separators: Sequence[str],
    chunk_size: int,
    overlap: int,
) -> List[Span]:
    separator = separators[-1]
    finer: Sequence[str] = ()
    for position, candidate in enumerate(separators):
        if candidate == "" or text.find(candidate, start, end) != -1:
            separator = candidate
            finer = separators[position + 1 :]
            break

    result: List[Span] = []
    pending: List[Span] = []
    for piece in _pieces(text, start, end, separator):
        if piece[1] - piece[0] <= chunk_size:
            pending.append(piece)
            continue
        if pending:
            result.extend(_merge(pending, chunk_size, overlap))
            pending = []
        if finer:
            result.extend(_split_spans(text, piece[0], piece[1], finer, chunk_size, overlap))
        else:
            # Indivisible with the remaining separators: accepted overflow.
            result.append(piece)
    if pending:
        result.extend(_merge(pending, chunk_size, overlap))
    return result


def split_text_spans(
    text: str,
    *,
    chunk_size: int = 200,
    overlap: int = 20,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> List[Span]:
    """Return ``(start, end)`` offsets of the chunks of ``text``.

    Coarser separators are tried first; a piece only descends to a finer
    separator when it alone is still larger than ``chunk_size``. Whitespace-only
    chunks are dropped.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")
    if not separators:
        raise ValueError("at least one separator is required")
    if not text:
        return []
    spans = _split_spans(text, 0, len(text), tuple(separators), chunk_size, overlap)
    return [(start, end) for start, end in spans if text[start:end].strip()]


def split_text(text: str, **kwargs) -> List[str]:
    return [text[start:end] for start, end in split_text_spans(text, **kwargs)]


def split_segments(
    segments: Iterable[RawSegment],
    *,
    chunk_size: int = 200,
    overlap: int = 20,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> List[DocumentChunk]:
    """Chunk loaded segments, numbering chunks per source file in reading order."""
    counters: dict[str, int] = {}
    chunks: List[DocumentChunk] = []
    for segment in segments:
        metadata = dict(segment.metadata)
        source = str(metadata.pop("source_path", ""))
        category = str(metadata.pop("category", ""))
        filename = str(metadata.pop("filename", ""))
        for start, end in split_text_spans(
            segment.text, chunk_size=chunk_size, overlap=overlap, separators=separators
        ):
            index = counters.get(source, 0)
            counters[source] = index + 1
            chunks.append(
                DocumentChunk(
                    text=segment.text[start:end],
                    category=category,
                    filename=filename,
                    source_path=source,
                    chunk_index=index,
                    start_index=start,
                    extra=dict(metadata),
                )
            )
    return chunks


def join_chunks(chunks: Sequence[DocumentChunk]) -> str:
    """Rebuild a segment's text from its chunks by dropping the overlapped prefix."""
    text = ""
    end: int | None = None
    for chunk in sorted(chunks, key=lambda c: c.chunk_index):
        if end is None:
            text = chunk.text
        else:
            text += chunk.text[max(end - chunk.start_index, 0) :]
        end = chunk.start_index + len(chunk.text)
    return text


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
