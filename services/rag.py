"""Retrieval index manager: chunk -> embed -> upsert, and embed -> rank -> format."""

import logging
from typing import Any, Dict, List, Optional

from models import (
    Chunk,
    IndexResult,
    NamespaceInfo,
    QueryResult,
    RetrievedPassage,
    TranscriptDocument,
)
from services.chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, split_text, split_transcript
from services.compression import BaseCompressor, HeuristicCompressor
from services.errors import IndexingFailed, QueryFailed
from services.openai import OpenAIEmbedder
from services.store import IndexItem, QdrantVectorIndex, point_id

logger = logging.getLogger(__name__)

MAX_RETRIEVAL_K = 10


def format_timestamp(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def format_context(passages: List[RetrievedPassage]) -> str:
    sections = []
    for n, passage in enumerate(passages, start=1):
        header = f"Excerpt #{n}"
        if passage.start_time is not None:
            header += f" [{format_timestamp(passage.start_time)}]"
        header += f" (relevance: {passage.score * 100:.1f}%):"
        sections.append(f"{header}\n{passage.text}\n")
    return "\n---\n".join(sections)


def _clamp(score: float) -> float:
    return min(1.0, max(0.0, float(score)))


def _chunk_payload(chunk: Chunk) -> Dict[str, Any]:
    return {
        **chunk.metadata,
        "video_id": chunk.video_id,
        "chunk_index": chunk.chunk_index,
        "start_time": chunk.start_time,
        "indexed_at": chunk.indexed_at.isoformat(),
    }


class RetrievalIndex:
    """Owns indexing and querying of per-video namespaces.

    Indexing is at-least-once: a failure part way through can leave a
    namespace partially written, and the recovery is to index again. Point
    ids are derived from ``(video_id, chunk_index)`` so a second pass
    overwrites the first instead of duplicating it.
    """

    def __init__(
        self,
        embedder: OpenAIEmbedder,
        vector_index: QdrantVectorIndex,
        compressor: Optional[BaseCompressor] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        if chunk_overlap >= chunk_size:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be less than chunk_size ({chunk_size})")
        self.embedder = embedder
        self.vector_index = vector_index
        self.compressor = compressor or HeuristicCompressor(max_sentences=3)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    async def index(
        self,
        video_id: str,
        text: Optional[str] = None,
        *,
        document: Optional[TranscriptDocument] = None,
        extra_metadata: Optional[Dict[str, Any]] = None,
        replace: bool = False,
    ) -> IndexResult:
        """Index ``document`` (preferred, keeps timestamps) or plain ``text``.

        ``replace`` drops the namespace first, so chunks left over from a
        longer earlier transcript do not survive.
        """
        if document is not None:
            chunks = split_transcript(document, self.chunk_size, self.chunk_overlap, extra_metadata)
        else:
            chunks = split_text(
                video_id,
                text or "",
                chunk_size=self.chunk_size,
                overlap=self.chunk_overlap,
                extra_metadata=extra_metadata,
            )
        if not chunks:
            raise IndexingFailed(f"no content to index for video {video_id}")

        logger.info("[rag] indexing video_id=%s chunks=%d", video_id, len(chunks))
        try:
            if replace and await self.vector_index.namespace_exists(video_id):
                logger.info("[rag] replacing namespace=%s", video_id)
                await self.vector_index.delete_namespace(video_id)
            vectors = await self.embedder.embed_documents([c.text for c in chunks])
            items = [
                IndexItem(
                    id=point_id(video_id, chunk.chunk_index),
                    vector=vector,
                    text=chunk.text,
                    metadata=_chunk_payload(chunk),
                )
                for chunk, vector in zip(chunks, vectors)
            ]
            await self.vector_index.upsert(video_id, items)
        except Exception as e:
            logger.exception("[rag] indexing failed video_id=%s", video_id)
            raise IndexingFailed(str(e) or type(e).__name__) from e

        logger.info("[rag] indexed video_id=%s chunks=%d", video_id, len(chunks))
        return IndexResult(video_id=video_id, chunk_count=len(chunks))

    async def query(
        self,
        video_id: str,
        question: str,
        k: int = 4,
        use_compression: bool = False,
    ) -> QueryResult:
        retrieval_k = min(k * 2, MAX_RETRIEVAL_K) if use_compression else k
        logger.info("[rag] query video_id=%s k=%d retrieval_k=%d compression=%s",
                    video_id, k, retrieval_k, use_compression)
        try:
            if not await self.vector_index.namespace_exists(video_id):
                raise QueryFailed(f"video {video_id} is not indexed")
            vector = await self.embedder.embed_query(question)
            hits = await self.vector_index.query(video_id, vector, retrieval_k)
        except QueryFailed:
            raise
        except Exception as e:
            logger.exception("[rag] query failed video_id=%s", video_id)
            raise QueryFailed(str(e) or type(e).__name__) from e

        passages = [
            RetrievedPassage(text=hit.text, metadata=hit.metadata, score=_clamp(hit.score))
            for hit in hits
        ]
        passages.sort(key=lambda p: p.score, reverse=True)

        if use_compression and passages:
            compressed = await self.compressor.compress_many([p.text for p in passages], question)
            passages = [
                RetrievedPassage(text=c.text, metadata=p.metadata, score=p.score)
                for p, c in zip(passages, compressed)
                if c.text.strip()
            ][:k]
        else:
            passages = passages[:k]

        logger.info("[rag] query results=%d video_id=%s", len(passages), video_id)
        return QueryResult(
            video_id=video_id,
            context=format_context(passages),
            results=passages,
            compression_used=use_compression,
        )

    async def is_indexed(self, video_id: str) -> bool:
        return (await self.describe(video_id)).exists

    async def describe(self, video_id: str) -> NamespaceInfo:
        try:
            count = await self.vector_index.count(video_id)
        except Exception:
            logger.exception("[rag] describe failed video_id=%s", video_id)
            return NamespaceInfo(video_id=video_id)
        return NamespaceInfo(video_id=video_id, exists=count > 0, chunk_count=count)
