"""Contextual compression of retrieved passages.

Two strategies share one interface:

- ``HeuristicCompressor`` keeps the sentences that mention the most query
  keywords. No API calls, so it is the default.
- ``ContextualCompressor`` asks the chat model to extract only the spans
  relevant to the question. More precise, one model call per passage.

Neither ever returns more text than it was given.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Union

from pydantic import BaseModel
from pydantic_ai.direct import model_request
from pydantic_ai.messages import ModelRequest, ModelResponse, TextPart, UserPromptPart
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

logger = logging.getLogger(__name__)

NOT_RELEVANT = "NOT_RELEVANT"
MIN_SENTENCE_LENGTH = 20
MIN_TERM_LENGTH = 3
# LLM output is kept only if it is at least 20% shorter than the passage
MAX_COMPRESSED_RATIO = 0.8

COMPRESSION_PROMPT = """Given the following text excerpt and a question, extract ONLY the sentences or phrases that are directly relevant to answering the question. If nothing is relevant, return "{sentinel}".

Question: {query}

Excerpt:
{text}

Relevant content (be concise):"""


class CompressionResult(BaseModel):
    text: str
    was_compressed: bool


def _query_terms(query: str) -> List[str]:
    return [t for t in re.findall(r"[\w'-]+", query.lower()) if len(t) > MIN_TERM_LENGTH]


def _sentences(text: str) -> List[str]:
    parts = (s.strip() for s in re.split(r"[.!?]+", text))
    return [s for s in parts if len(s) > MIN_SENTENCE_LENGTH]


def extract_relevant_sentences(text: str, query: str, max_sentences: int = 3) -> str:
    """Return the ``max_sentences`` sentences of ``text`` with most query keywords.

    Falls back to the leading sentences when nothing matches, and to ``text``
    itself when the joined result would not be shorter.
    """
    if not text or not text.strip():
        return ""
    terms = _query_terms(query)
    sentences = _sentences(text)

    scored = []
    for sentence in sentences:
        lower = sentence.lower()
        scored.append((sentence, sum(1 for term in terms if term in lower)))
    # sorted() is stable, so ties keep passage order
    top = sorted(scored, key=lambda item: item[1], reverse=True)[:max_sentences]
    picked = [sentence for sentence, score in top if score > 0]
    if not picked:
        picked = sentences[:max_sentences]
    if not picked:
        return text

    result = ". ".join(picked) + "."
    return result if len(result) <= len(text) else text


def quick_compress(texts: List[str], query: str, sentences_per_passage: int = 2) -> List[str]:
    return [extract_relevant_sentences(t, query, sentences_per_passage) for t in texts]


class BaseCompressor(ABC):

    @abstractmethod
    async def compress(self, text: str, query: str) -> CompressionResult:
        ...

    async def compress_many(self, texts: List[str], query: str,
                            max_concurrent: int = 3) -> List[CompressionResult]:
        """Compress in waves of ``max_concurrent``; each wave finishes before the next starts."""
        results: List[CompressionResult] = []
        for i in range(0, len(texts), max_concurrent):
            batch = texts[i:i + max_concurrent]
            results.extend(await asyncio.gather(*(self.compress(t, query) for t in batch)))
        return results


class HeuristicCompressor(BaseCompressor):

    def __init__(self, max_sentences: int = 2):
        self.max_sentences = max_sentences

    async def compress(self, text: str, query: str) -> CompressionResult:
        compressed = extract_relevant_sentences(text, query, self.max_sentences)
        return CompressionResult(text=compressed, was_compressed=compressed != text)

    async def compress_many(self, texts: List[str], query: str,
                            max_concurrent: int = 3) -> List[CompressionResult]:
        # pure CPU work, one pass over the batch
        compressed = quick_compress(texts, query, self.max_sentences)
        return [CompressionResult(text=c, was_compressed=c != t) for c, t in zip(compressed, texts)]


def _response_text(response: ModelResponse) -> str:
    return "".join(p.content for p in response.parts if isinstance(p, TextPart)).strip()


class ContextualCompressor(BaseCompressor):
    """Model-assisted compression."""

    def __init__(self, model: Union[Model, str], model_settings: Optional[ModelSettings] = None):
        self.model = model
        # Deterministic extraction, bounded output
        self.model_settings = model_settings or ModelSettings(temperature=0.0, max_tokens=500)

    async def compress(self, text: str, query: str) -> CompressionResult:
        if not text.strip():
            return CompressionResult(text="", was_compressed=False)
        prompt = COMPRESSION_PROMPT.format(sentinel=NOT_RELEVANT, query=query, text=text)
        try:
            response = await model_request(
                self.model,
                [ModelRequest(parts=[UserPromptPart(content=prompt)])],
                model_settings=self.model_settings,
            )
        except Exception:
            logger.exception("[compression] model call failed; keeping original passage")
            return CompressionResult(text=text, was_compressed=False)

        content = _response_text(response)
        if not content or content == NOT_RELEVANT:
            return CompressionResult(text="", was_compressed=True)
        if len(content) < len(text) * MAX_COMPRESSED_RATIO:
            return CompressionResult(text=content, was_compressed=True)
        return CompressionResult(text=text, was_compressed=False)
