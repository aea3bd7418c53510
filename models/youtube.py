from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class VideoMeta(BaseModel):
    video_id: str
    title: str = ""
    channel: Optional[str] = None
    channel_id: Optional[str] = None
    url: str


class TranscriptSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    start: Optional[float] = None  # seconds from the start of the video
    duration: Optional[float] = None


class TranscriptDocument(BaseModel):
    """One fetched transcript. ``text`` is the flat view used for chunking."""

    model_config = ConfigDict(frozen=True)

    video_id: str
    language: str = "en"
    segments: List[TranscriptSegment] = Field(default_factory=list)
    text: str

    @property
    def url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    video_id: str
    chunk_index: int
    text: str
    start_time: Optional[float] = None
    indexed_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> str:
        return f"{self.video_id}#{self.chunk_index}"


class IndexResult(BaseModel):
    video_id: str
    chunk_count: int


class NamespaceInfo(BaseModel):
    video_id: str
    exists: bool = False
    chunk_count: int = 0


class RetrievedPassage(BaseModel):
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: float = Field(ge=0.0, le=1.0)

    @property
    def start_time(self) -> Optional[float]:
        value = self.metadata.get("start_time")
        return float(value) if value is not None else None


class QueryResult(BaseModel):
    video_id: str
    context: str
    results: List[RetrievedPassage] = Field(default_factory=list)
    compression_used: bool = False
