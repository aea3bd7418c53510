"""Transcript chunking.

Splits a transcript's flat text into overlapping passages, preferring the
strongest boundary that keeps a passage under ``chunk_size``:
paragraph break, line break, sentence end, space, and finally a hard cut.
Each chunk gets the start time of the caption segment its first character
falls in, so answers can cite ``MM:SS`` positions.
"""

from bisect import bisect_right
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from langchain_text_splitters import RecursiveCharacterTextSplitter

from models import Chunk, TranscriptDocument, TranscriptSegment

DEFAULT_CHUNK_SIZE = 2000
DEFAULT_CHUNK_OVERLAP = 400
SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


def _make_splitter(chunk_size: int, overlap: int) -> RecursiveCharacterTextSplitter:
    if overlap >= chunk_size:
        raise ValueError(f"overlap ({overlap}) must be less than chunk_size ({chunk_size})")
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=overlap,
        length_function=len,
        separators=SEPARATORS,
        keep_separator="end",
        add_start_index=True,
    )


def _segment_offsets(segments: Sequence[TranscriptSegment]) -> List[int]:
    """Character offset of each segment inside the single-space joined text."""
    offsets, pos = [], 0
    for seg in segments:
        offsets.append(pos)
        pos += len(seg.text) + 1
    return offsets


def _start_time_at(offset: int, segments: Sequence[TranscriptSegment],
                   offsets: List[int]) -> Optional[float]:
    if not segments or offset < 0:
        return None
    idx = max(0, bisect_right(offsets, offset) - 1)
    return segments[idx].start


def split_text(
    video_id: str,
    text: str,
    *,
    segments: Optional[Sequence[TranscriptSegment]] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> List[Chunk]:
    """Split ``text`` into ordered chunks for ``video_id``.

    ``segments`` must be the segments ``text`` was joined from; when given,
    chunks carry the start time of their first segment.
    """
    splitter = _make_splitter(chunk_size, overlap)
    if not text or not text.strip():
        return []

    segments = list(segments or [])
    offsets = _segment_offsets(segments)
    indexed_at = datetime.now(timezone.utc)
    docs = splitter.create_documents([text])

    chunks = []
    for idx, doc in enumerate(docs):
        start_index = doc.metadata.get("start_index", -1)
        chunks.append(Chunk(
            video_id=video_id,
            chunk_index=idx,
            text=doc.page_content,
            start_time=_start_time_at(start_index, segments, offsets),
            indexed_at=indexed_at,
            metadata=dict(extra_metadata or {}),
        ))
    return chunks


def split_transcript(
    document: TranscriptDocument,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> List[Chunk]:
    return split_text(
        document.video_id,
        document.text,
        segments=document.segments,
        chunk_size=chunk_size,
        overlap=overlap,
        extra_metadata={"language": document.language, **(extra_metadata or {})},
    )
