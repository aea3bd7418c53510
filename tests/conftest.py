"""
Shared test fixtures for the yt-qa-agent test suite.

Provides a deterministic embedder, an in-memory Qdrant index, a scripted
transcript source and scripted pydantic-ai models.
"""

import re
import zlib
from typing import Callable, List, Optional, Sequence, Union

import pytest
from pydantic_ai.messages import ModelResponse, TextPart, ToolCallPart
from pydantic_ai.models.function import FunctionModel
from qdrant_client import AsyncQdrantClient

from agent.tools import AgentDeps
from models import TranscriptSegment
from services.rag import RetrievalIndex
from services.store import QdrantVectorIndex
from services.youtube import TranscriptSource


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class HashEmbedder:
    """Bag-of-words vectors: texts sharing words score higher under cosine."""

    def __init__(self, dim: int = 256):
        self.dim = dim
        self.calls = 0

    def _vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token in re.findall(r"\w+", text.lower()):
            vec[zlib.crc32(token.encode()) % self.dim] += 1.0
        if not any(vec):
            vec[0] = 1.0
        return vec

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        return [self._vector(t) for t in texts]

    async def embed_query(self, text: str) -> List[float]:
        return self._vector(text)


class FakeTranscriptSource(TranscriptSource):
    """Stands in for ``TranscriptSource``; ``outcomes`` are returned or raised in order."""

    def __init__(self, segments: Optional[Sequence[TranscriptSegment]] = None,
                 outcomes: Optional[list] = None):
        self.segments = list(segments or [])
        self.outcomes = list(outcomes or [])
        self.calls: List[tuple] = []

    def fetch(self, video_id: str, language: str = "en") -> List[TranscriptSegment]:
        self.calls.append((video_id, language))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return list(outcome)
        return list(self.segments)


class Script:
    """A ``FunctionModel`` that replays canned responses and records what it was sent."""

    def __init__(self, responses: Sequence[Union[ModelResponse, BaseException, Callable]]):
        self.responses = list(responses)
        self.requests: List[list] = []
        self.model = FunctionModel(self._respond)

    def _respond(self, messages, info) -> ModelResponse:
        self.requests.append(list(messages))
        if not self.responses:
            raise AssertionError("model called more times than scripted")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(messages, info)
        return item


def tool_call(name: str, call_id: str, **args) -> ModelResponse:
    return ModelResponse(parts=[ToolCallPart(tool_name=name, args=args, tool_call_id=call_id)])


def text_reply(text: str) -> ModelResponse:
    return ModelResponse(parts=[TextPart(content=text)])


def lecture_segments(n: int = 30) -> List[TranscriptSegment]:
    topics = [
        "gradient descent updates the weights by following the negative gradient",
        "the learning rate controls how large each update step is",
        "overfitting happens when the model memorizes the training data",
        "regularization adds a penalty that keeps the weights small",
        "backpropagation computes gradients layer by layer",
    ]
    return [
        TranscriptSegment(text=f"In part {i} we see that {topics[i % len(topics)]}.", start=i * 12.5, duration=12.0)
        for i in range(n)
    ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
async def qdrant():
    client = AsyncQdrantClient(location=":memory:")
    yield client
    await client.close()


@pytest.fixture
def vector_index(qdrant):
    return QdrantVectorIndex(qdrant, collection_prefix="test_")


@pytest.fixture
def retrieval_index(embedder, vector_index):
    return RetrievalIndex(embedder, vector_index, chunk_size=300, chunk_overlap=60)


@pytest.fixture
def segments():
    return lecture_segments()


@pytest.fixture
def transcript_source(segments):
    return FakeTranscriptSource(segments)


@pytest.fixture
def deps(retrieval_index, transcript_source):
    return AgentDeps(
        index=retrieval_index,
        transcript_source=transcript_source,
        transcript_max_retries=1,
        transcript_initial_delay=0.0,
    )
