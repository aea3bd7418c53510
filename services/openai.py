import logging
from typing import List, Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

EMBED_MODEL = "text-embedding-3-small"  # 1536 dims
EMBED_BATCH_SIZE = 100


class OpenAIEmbedder:
    """Maps text to fixed-length vectors with the OpenAI embeddings endpoint."""

    def __init__(self, model: str = EMBED_MODEL, dimensions: Optional[int] = None,
                 client: Optional[AsyncOpenAI] = None):
        self.model = model
        self.dimensions = dimensions
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        # AsyncOpenAI reads OPENAI_API_KEY itself and raises if it is missing
        if not self._client:
            self._client = AsyncOpenAI()
        return self._client

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        logger.info("[embed] creating embeddings for %d texts using %s", len(texts), self.model)
        kwargs = {"dimensions": self.dimensions} if self.dimensions else {}
        vecs: List[List[float]] = []
        for i in range(0, len(texts), EMBED_BATCH_SIZE):
            batch = texts[i:i + EMBED_BATCH_SIZE]
            resp = await self._get_client().embeddings.create(model=self.model, input=batch, **kwargs)
            vecs.extend(d.embedding for d in resp.data)
        logger.info("[embed] embeddings ready: %d vectors", len(vecs))
        return vecs

    async def embed_query(self, text: str) -> List[float]:
        return (await self.embed_documents([text]))[0]
