"""The closed set of tools the agent may call.

Each tool is a ``ToolSpec``: a name, a description for the model, a pydantic
args model that doubles as the JSON schema, and an async handler. Handlers
raise domain errors; ``execute_tool`` turns every failure into a
``ToolResult`` so the model can read it and adapt.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic_ai.tools import ToolDefinition

from models import (
    ExtractVideoIdArgs,
    FetchTranscriptArgs,
    IndexContentArgs,
    IsVideoIndexedArgs,
    QueryVideoContentArgs,
    ToolName,
    ToolResult,
)
from services.errors import (
    IndexingFailed,
    InvalidIdentifier,
    QueryFailed,
    TranscriptUnavailable,
    ValidationFailed,
    VideoNotFound,
)
from services.rag import RetrievalIndex
from services.youtube import TranscriptSource, VideoInfoClient, extract_video_id, fetch_transcript

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500


class AgentDeps(BaseModel):
    """Everything the tools need, passed explicitly to the agent."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    index: RetrievalIndex
    transcript_source: Optional[TranscriptSource] = None
    video_info: Optional[VideoInfoClient] = None
    use_compression: bool = False
    default_k: int = 4
    transcript_max_retries: int = 3
    transcript_initial_delay: float = 1.0
    transcript_backoff_multiplier: float = 2.0


Handler = Callable[[AgentDeps, Any], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    args_model: Type[BaseModel]
    handler: Handler

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name.value,
            description=self.description,
            parameters_json_schema=self.args_model.model_json_schema(),
        )


async def _fetch(deps: AgentDeps, video_url_or_id: str, language: str):
    return await fetch_transcript(
        video_url_or_id,
        language=language,
        max_retries=deps.transcript_max_retries,
        initial_delay=deps.transcript_initial_delay,
        backoff_multiplier=deps.transcript_backoff_multiplier,
        source=deps.transcript_source,
    )


# ----- Handlers -----
async def extract_video_id_tool(deps: AgentDeps, args: ExtractVideoIdArgs) -> ToolResult:
    video_id = extract_video_id(args.url)
    if not video_id:
        raise InvalidIdentifier(args.url)
    return ToolResult(content=f"Extracted video ID: {video_id}", artifact=video_id)


async def is_video_indexed_tool(deps: AgentDeps, args: IsVideoIndexedArgs) -> ToolResult:
    info = await deps.index.describe(args.video_id)
    if info.exists:
        content = f"Video {args.video_id} is indexed and ready to query."
    else:
        content = f"Video {args.video_id} is NOT indexed. You must fetch and index it first."
    return ToolResult(content=content, artifact=info)


async def fetch_transcript_tool(deps: AgentDeps, args: FetchTranscriptArgs) -> ToolResult:
    document = await _fetch(deps, args.video_url_or_id, args.language)
    word_count = len(document.text.split())
    content = (
        f"Successfully fetched transcript for video {document.video_id}.\n"
        f"Language: {args.language}\n"
        f"Word count: ~{word_count}\n"
        f"Preview: {document.text[:PREVIEW_CHARS]}..."
    )
    return ToolResult(content=content, artifact=document)


async def _video_metadata(deps: AgentDeps, video_id: str) -> Dict[str, Any]:
    if deps.video_info is None:
        return {}
    try:
        meta = await asyncio.to_thread(deps.video_info.get_video_meta, video_id)
    except Exception as e:
        logger.warning("[tool.index_content] metadata lookup failed for %s: %s", video_id, e)
        return {}
    return {"title": meta.title, "channel": meta.channel, "url": meta.url}


async def index_content_tool(deps: AgentDeps, args: IndexContentArgs) -> ToolResult:
    document = await _fetch(deps, args.video_url_or_id, args.language)
    extra = await _video_metadata(deps, document.video_id)
    result = await deps.index.index(document.video_id, document=document, extra_metadata=extra)
    return ToolResult(
        content=f"Successfully indexed video {result.video_id} into {result.chunk_count} chunks. Ready for querying.",
        artifact=result,
    )


async def query_video_content_tool(deps: AgentDeps, args: QueryVideoContentArgs) -> ToolResult:
    # Models sometimes pass the whole URL here
    video_id = extract_video_id(args.video_id) or args.video_id
    result = await deps.index.query(video_id, args.question, k=args.k or deps.default_k,
                                    use_compression=deps.use_compression)
    if not result.results:
        content = f"No relevant excerpts were found in video {video_id} for this question."
    else:
        content = (
            f"Relevant excerpts from video {video_id}:\n\n"
            f"{result.context}\n\n"
            f"Use these {len(result.results)} excerpts to answer the user's question. "
            f"Synthesize the information and cite which excerpt number supports each claim."
        )
    return ToolResult(content=content, artifact=result.results)


TOOLS: Dict[ToolName, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            ToolName.EXTRACT_VIDEO_ID,
            "Extracts the video ID from a YouTube URL. Supports standard, short (youtu.be), embed, "
            "and mobile URL formats. Returns the 11-character video ID.",
            ExtractVideoIdArgs,
            extract_video_id_tool,
        ),
        ToolSpec(
            ToolName.IS_VIDEO_INDEXED,
            "Checks if a YouTube video's transcript has been indexed in the vector database. "
            "Returns a message indicating whether the video is indexed.",
            IsVideoIndexedArgs,
            is_video_indexed_tool,
        ),
        ToolSpec(
            ToolName.FETCH_TRANSCRIPT,
            "Downloads the transcript from a YouTube video without indexing it. Returns a preview "
            "of the transcript and metadata. Use it to inspect quality or language before indexing.",
            FetchTranscriptArgs,
            fetch_transcript_tool,
        ),
        ToolSpec(
            ToolName.INDEX_CONTENT,
            "Fetches the transcript from YouTube and indexes it into the vector database: downloads "
            "the transcript, splits it into chunks, generates embeddings and stores them. Call this "
            "when the video is not indexed yet.",
            IndexContentArgs,
            index_content_tool,
        ),
        ToolSpec(
            ToolName.QUERY_VIDEO_CONTENT,
            "Searches a YouTube video transcript for information relevant to a question. Returns "
            "numbered excerpts with timestamps and relevance scores. Always synthesize the excerpts "
            "into an answer with citations (e.g., 'According to excerpt #2...'). The video must be "
            "indexed first.",
            QueryVideoContentArgs,
            query_video_content_tool,
        ),
    )
}


def tool_definitions() -> List[ToolDefinition]:
    return [spec.definition() for spec in TOOLS.values()]


# ----- Error conversion -----
SUGGESTIONS = {
    ToolName.FETCH_TRANSCRIPT: "Make sure the video URL is correct and the video has captions enabled.",
    ToolName.INDEX_CONTENT: "Ensure the video ID is valid. The indexing service may be temporarily unavailable.",
    ToolName.QUERY_VIDEO_CONTENT: "The video must be indexed before querying. Try indexing it first.",
    ToolName.EXTRACT_VIDEO_ID: "Please provide a valid YouTube URL (youtube.com/watch?v=... or youtu.be/...)",
    ToolName.IS_VIDEO_INDEXED: "Unable to check index status. The database may be temporarily unavailable.",
}


def _describe_validation(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in error.errors()
    )


def describe_tool_error(error: BaseException) -> str:
    if isinstance(error, ValidationError):
        return f"Input validation error: {_describe_validation(error)}"
    if isinstance(error, ValidationFailed):
        return f"Input validation error: {error.detail}"
    if isinstance(error, InvalidIdentifier):
        return f"Input validation error: {error}"
    if isinstance(error, VideoNotFound):
        return f"{error}. Please check the URL and try again."
    if isinstance(error, TranscriptUnavailable):
        return f"Transcript not available: {error}. This video may not have captions/subtitles enabled."
    if isinstance(error, IndexingFailed):
        return f"Indexing failed: {error.detail}. Please try again or contact support if the issue persists."
    if isinstance(error, QueryFailed):
        return f"Search failed: {error.detail}. Make sure the video has been indexed first."
    return f"Tool error: {error}"


def tool_error_message(tool: str, error: BaseException) -> str:
    message = describe_tool_error(error)
    try:
        suggestion = SUGGESTIONS.get(ToolName(tool))
    except ValueError:
        suggestion = None
    return f"{message}\n\nSuggestion: {suggestion}" if suggestion else message


async def execute_tool(name: str, raw_args: Dict[str, Any], deps: AgentDeps) -> ToolResult:
    """Validate ``raw_args`` and run tool ``name``. Never raises for tool failures."""
    try:
        spec = TOOLS[ToolName(name)]
    except ValueError:
        logger.warning("[tool] unknown tool requested: %s", name)
        known = ", ".join(t.value for t in ToolName)
        return ToolResult(content=f"Tool error: unknown tool '{name}'. Available tools: {known}")

    logger.info("[tool.%s] args=%s", name, raw_args)
    try:
        args = spec.args_model.model_validate(raw_args)
        result = await spec.handler(deps, args)
    except Exception as e:
        logger.exception("[tool.%s] failed", name)
        return ToolResult(content=tool_error_message(name, e))
    logger.info("[tool.%s] ok content_chars=%d", name, len(result.content))
    return result
