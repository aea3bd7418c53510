import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams

logger = logging.getLogger(__name__)


class IndexItem(BaseModel):
    id: str
    vector: List[float]
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ScoredItem(BaseModel):
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: float


def point_id(video_id: str, chunk_index: int) -> str:
    # Qdrant requires point IDs to be UUID or unsigned int. Deterministic UUIDv5 makes
    # re-indexing overwrite the same points instead of adding new ones.
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"yt::{video_id}::{chunk_index}"))


def make_client(url: str = "http://localhost:6333", api_key: Optional[str] = None) -> AsyncQdrantClient:
    if url == ":memory:":
        logger.info("[qdrant] using in-process store")
        return AsyncQdrantClient(location=":memory:")
    logger.info("[qdrant] connecting to %s", url)
    return AsyncQdrantClient(url=url, api_key=api_key)


class QdrantVectorIndex:
    """Namespaced vector index: one Qdrant collection per namespace (video)."""

    def __init__(self, client: AsyncQdrantClient, collection_prefix: str = "yt_"):
        self.client = client
        self.collection_prefix = collection_prefix

    def collection_name(self, namespace: str) -> str:
        return f"{self.collection_prefix}{namespace}"

    async def wait_for_ready(self, timeout_s: float = 15):
        start = time.monotonic()
        last_err = None
        logger.info("[qdrant] waiting for readiness (timeout %ss)...", timeout_s)
        while time.monotonic() - start < timeout_s:
            try:
                await self.client.get_collections()
                logger.info("[qdrant] ready")
                return
            except Exception as e:
                last_err = e
                await asyncio.sleep(0.5)
        raise RuntimeError("Qdrant not reachable. Start Qdrant (docker) or set QDRANT_URL correctly.") from last_err

    async def namespace_exists(self, namespace: str) -> bool:
        return await self.client.collection_exists(self.collection_name(namespace))

    async def ensure_namespace(self, namespace: str, dim: int):
        name = self.collection_name(namespace)
        if await self.client.collection_exists(name):
            return
        logger.info("[qdrant] creating collection '%s' size=%d", name, dim)
        await self.client.create_collection(
            collection_name=name,
            vectors_config=VectorParams(size=dim, distance=Distance.COSINE),
        )

    async def upsert(self, namespace: str, items: List[IndexItem]):
        if not items:
            return
        await self.ensure_namespace(namespace, len(items[0].vector))
        logger.info("[qdrant] upserting %d points into namespace=%s", len(items), namespace)
        points = [
            PointStruct(id=item.id, vector=item.vector, payload={**item.metadata, "text": item.text})
            for item in items
        ]
        await self.client.upsert(collection_name=self.collection_name(namespace), points=points, wait=True)
        logger.info("[qdrant] upsert complete")

    async def query(self, namespace: str, vector: List[float], k: int) -> List[ScoredItem]:
        logger.info("[qdrant] query namespace=%s top_k=%d", namespace, k)
        response = await self.client.query_points(
            collection_name=self.collection_name(namespace),
            query=vector,
            limit=k,
            with_payload=True,
        )
        hits = []
        for point in response.points:
            payload = dict(point.payload or {})
            text = str(payload.pop("text", ""))
            hits.append(ScoredItem(text=text, metadata=payload, score=point.score))
        logger.info("[qdrant] query hits=%d", len(hits))
        return hits

    async def count(self, namespace: str) -> int:
        name = self.collection_name(namespace)
        if not await self.client.collection_exists(name):
            return 0
        return (await self.client.count(collection_name=name, exact=True)).count

    async def delete_namespace(self, namespace: str) -> bool:
        return await self.client.delete_collection(self.collection_name(namespace))
