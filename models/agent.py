from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ToolName(str, Enum):
    EXTRACT_VIDEO_ID = "extract_video_id"
    IS_VIDEO_INDEXED = "is_video_indexed"
    FETCH_TRANSCRIPT = "fetch_transcript"
    INDEX_CONTENT = "index_content"
    QUERY_VIDEO_CONTENT = "query_video_content"


class AgentStatus(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOL = "executing_tool"
    TERMINAL_ANSWER = "terminal_answer"
    TERMINAL_ERROR = "terminal_error"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentStatus.TERMINAL_ANSWER, AgentStatus.TERMINAL_ERROR)


# ----- Tool argument schemas (sent to the model as JSON schema) -----
class ExtractVideoIdArgs(BaseModel):
    url: str = Field(description="YouTube URL to extract video ID from")


class IsVideoIndexedArgs(BaseModel):
    video_id: str = Field(description="11-character YouTube video ID to check indexing status")


class FetchTranscriptArgs(BaseModel):
    video_url_or_id: str = Field(description="YouTube video URL or 11-character video ID")
    language: str = Field(
        default="en", description="Language code for transcript (e.g., 'en', 'es', 'fr')"
    )


class IndexContentArgs(BaseModel):
    video_url_or_id: str = Field(description="YouTube video URL or 11-character video ID to index")
    language: str = Field(
        default="en", description="Language code for transcript (e.g., 'en', 'es', 'fr')"
    )


class QueryVideoContentArgs(BaseModel):
    video_id: str = Field(description="11-character YouTube video ID to query (not a full URL)")
    question: str = Field(description="The question to answer from the video")
    k: Optional[int] = Field(default=None, ge=1, le=10, description="Number of relevant chunks to retrieve")


class ToolResult(BaseModel):
    """What a tool hands back: ``content`` for the model, ``artifact`` for code."""

    content: str
    artifact: Optional[Any] = None


@dataclass
class OrchestratorState:
    # pydantic_ai ModelRequest / ModelResponse values, oldest first
    messages: List[Any] = field(default_factory=list)
    step_count: int = 0
    status: AgentStatus = AgentStatus.AWAITING_MODEL
    answer: Optional[str] = None
    # artifacts keyed by tool_call_id; never part of the model history
    artifacts: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "OrchestratorState":
        return replace(self, messages=list(self.messages), artifacts=dict(self.artifacts))
