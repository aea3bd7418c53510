"""Tests for the retrieval index manager against an in-memory Qdrant."""

import re

import pytest

from conftest import HashEmbedder
from models import RetrievedPassage, TranscriptDocument
from services.errors import IndexingFailed, QueryFailed
from services.rag import RetrievalIndex, format_context, format_timestamp
from services.store import IndexItem, point_id

TIMESTAMPED_HEADER = re.compile(r"^Excerpt #\d+ \[\d+:\d{2}\] \(relevance: \d+\.\d%\):$")


@pytest.fixture
def document(segments):
    return TranscriptDocument(
        video_id="lecture0001",
        segments=segments,
        text=" ".join(s.text for s in segments),
    )


class FailingEmbedder(HashEmbedder):
    async def embed_documents(self, texts):
        raise RuntimeError("embedding service unavailable")


def test_format_timestamp():
    assert format_timestamp(0) == "0:00"
    assert format_timestamp(65.9) == "1:05"
    assert format_timestamp(3600) == "60:00"


def test_format_context_numbering_and_timestamps():
    passages = [
        RetrievedPassage(text="first", metadata={"start_time": 125.0}, score=0.875),
        RetrievedPassage(text="second", metadata={}, score=0.5),
    ]

    context = format_context(passages)

    assert context == (
        "Excerpt #1 [2:05] (relevance: 87.5%):\nfirst\n"
        "\n---\n"
        "Excerpt #2 (relevance: 50.0%):\nsecond\n"
    )


async def test_index_then_describe(retrieval_index, document):
    result = await retrieval_index.index(document.video_id, document=document)

    info = await retrieval_index.describe(document.video_id)
    assert result.chunk_count > 1
    assert info.exists
    assert info.chunk_count == result.chunk_count
    assert await retrieval_index.is_indexed(document.video_id)


async def test_reindexing_keeps_one_namespace(retrieval_index, qdrant, document):
    first = await retrieval_index.index(document.video_id, document=document)
    await retrieval_index.index(document.video_id, document=document)

    collections = [c.name for c in (await qdrant.get_collections()).collections]
    info = await retrieval_index.describe(document.video_id)
    assert collections == [f"test_{document.video_id}"]
    assert info.chunk_count >= first.chunk_count


async def test_replace_drops_stale_chunks(retrieval_index, document):
    await retrieval_index.index(document.video_id, document=document)

    result = await retrieval_index.index(document.video_id, text="A much shorter transcript.", replace=True)

    assert result.chunk_count == 1
    assert (await retrieval_index.describe(document.video_id)).chunk_count == 1


async def test_index_plain_text_with_metadata(retrieval_index, qdrant):
    await retrieval_index.index("plaintext01", text="Some words about gradient descent.", extra_metadata={"title": "T"})

    points, _ = await qdrant.scroll("test_plaintext01", with_payload=True)
    payload = points[0].payload
    assert payload["title"] == "T"
    assert payload["video_id"] == "plaintext01"
    assert payload["chunk_index"] == 0
    assert payload["start_time"] is None


async def test_index_failure_raises_indexing_failed(vector_index, document):
    index = RetrievalIndex(FailingEmbedder(), vector_index, chunk_size=300, chunk_overlap=60)

    with pytest.raises(IndexingFailed) as exc_info:
        await index.index(document.video_id, document=document)

    assert "embedding service unavailable" in str(exc_info.value)


async def test_index_empty_text_fails(retrieval_index):
    with pytest.raises(IndexingFailed):
        await retrieval_index.index("empty000001", text="   ")


async def test_query_missing_namespace_fails(retrieval_index):
    with pytest.raises(QueryFailed):
        await retrieval_index.query("missing0001", "anything")


async def test_missing_namespace_is_not_indexed(retrieval_index):
    info = await retrieval_index.describe("missing0001")

    assert not info.exists
    assert info.chunk_count == 0
    assert not await retrieval_index.is_indexed("missing0001")


async def test_empty_namespace_returns_no_results(retrieval_index, vector_index):
    await vector_index.ensure_namespace("emptyns0001", dim=256)

    result = await retrieval_index.query("emptyns0001", "anything")

    assert result.results == []
    assert result.context == ""


async def test_query_results_sorted_and_scored(retrieval_index, document):
    await retrieval_index.index(document.video_id, document=document)

    result = await retrieval_index.query(document.video_id, "what does gradient descent do", k=5)

    scores = [p.score for p in result.results]
    assert 0 < len(scores) <= 5
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= s <= 1.0 for s in scores)


async def test_query_with_compression(retrieval_index, document):
    await retrieval_index.index(document.video_id, document=document)

    compressed = await retrieval_index.query(document.video_id, "learning rate", k=3, use_compression=True)

    assert compressed.compression_used
    assert 0 < len(compressed.results) <= 3
    assert all(p.text.strip() for p in compressed.results)
    assert all(len(p.text) <= retrieval_index.chunk_size for p in compressed.results)


async def test_twenty_five_chunk_video_query(retrieval_index, vector_index, embedder):
    video_id = "gd000000001"
    texts = [
        f"Section {i}: " + ("gradient descent takes a step downhill" if i % 5 == 0 else "unrelated chatter about lunch")
        for i in range(25)
    ]
    vectors = await embedder.embed_documents(texts)
    await vector_index.upsert(video_id, [
        IndexItem(id=point_id(video_id, i), vector=v, text=t,
                  metadata={"video_id": video_id, "chunk_index": i, "start_time": i * 30.0})
        for i, (v, t) in enumerate(zip(vectors, texts))
    ])
    assert (await retrieval_index.describe(video_id)).chunk_count == 25

    result = await retrieval_index.query(video_id, "gradient descent", k=4)

    assert len(result.results) <= 4
    assert all("gradient descent" in p.text for p in result.results)
    headers = [line for line in result.context.splitlines() if line.startswith("Excerpt #")]
    assert len(headers) == len(result.results)
    assert all(TIMESTAMPED_HEADER.match(h) for h in headers)
