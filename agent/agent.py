import logging
from typing import AsyncIterator, List, Optional, Tuple, Union

from pydantic_ai.direct import model_request
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters

from config import Settings
from models import AgentStatus, OrchestratorState, ToolResult
from services.compression import ContextualCompressor, HeuristicCompressor
from services.errors import AgentError, RequestTimeout
from services.openai import OpenAIEmbedder
from services.rag import RetrievalIndex
from services.store import QdrantVectorIndex, make_client
from services.youtube import TranscriptSource, VideoInfoClient
from .tools import AgentDeps, execute_tool, tool_definitions

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a YouTube video analyst. You help users understand video content by answering questions about it.

## Tools
- extract_video_id: parse a YouTube URL into its 11-character video ID
- is_video_indexed: check whether the video's transcript is already in the database
- fetch_transcript: download the transcript and return a preview (optional, for inspecting quality/language)
- index_content: fetch the full transcript and index it for semantic search
- query_video_content: search indexed content; returns numbered excerpts with timestamps and relevance scores

## Workflow
1. Extract the video ID from the user's URL.
2. Check whether the video is already indexed. Never index a video that is already indexed.
3. If it is not indexed, call index_content (it fetches and indexes in one step).
4. Query the indexed content with the user's question.
5. Synthesize the excerpts into an answer.
Call one tool at a time.

## Answer format
- Start with a direct answer to the question.
- Support each claim with excerpt citations: "According to excerpt #2..."
- Include timestamps when available: "At 3:42, the speaker mentions..."
- If the information is not in the video, say so explicitly: "This topic wasn't covered in the video."
- Never return raw excerpts without analysis. Combine excerpts when relevant and point out conflicts.
- Do not make claims the excerpts do not support."""

CONTINUE_PROMPT = "Continue: call one of the tools, or reply with your final answer."
SKIPPED_CALL = "Not executed: only one tool call runs per step. Call it again if it is still needed."


def user_prompt(url: str, question: str) -> str:
    return f"URL: {url}\nQuestion: {question}"


def split_response(response: ModelResponse) -> Tuple[str, List[ToolCallPart]]:
    text = "".join(p.content for p in response.parts if isinstance(p, TextPart))
    calls = [p for p in response.parts if isinstance(p, ToolCallPart)]
    return text, calls


class YouTubeAgent:
    """Bounded tool loop over a pydantic-ai model.

    Built once per process and shared by requests; all per-request state
    lives in the ``OrchestratorState`` created by ``iter``.
    """

    def __init__(self, model: Union[Model, str], deps: AgentDeps,
                 system_prompt: str = SYSTEM_PROMPT, max_steps: int = 10):
        self.model = model
        self.deps = deps
        self.system_prompt = system_prompt
        self.max_steps = max_steps
        self._params = ModelRequestParameters(function_tools=tool_definitions(), allow_text_output=True)

    async def _invoke(self, state: OrchestratorState) -> ModelResponse:
        try:
            return await model_request(self.model, state.messages, model_request_parameters=self._params)
        except Exception as e:
            logger.exception("[agent] model call failed")
            raise AgentError(f"Model call failed: {e}") from e

    async def _run_tool(self, call: ToolCallPart) -> ToolResult:
        try:
            raw_args = call.args_as_dict()
        except (ValueError, AssertionError) as e:
            return ToolResult(content=f"Input validation error: arguments are not a valid JSON object ({e})")
        return await execute_tool(call.tool_name, raw_args, self.deps)

    async def iter(self, url: str, question: str) -> AsyncIterator[OrchestratorState]:
        """Yield a snapshot of the state after every transition.

        Raises ``AgentError`` when the model call fails and ``RequestTimeout``
        when the step budget runs out; in both cases a ``terminal_error``
        snapshot is yielded first.
        """
        state = OrchestratorState(messages=[ModelRequest(parts=[
            SystemPromptPart(content=self.system_prompt),
            UserPromptPart(content=user_prompt(url, question)),
        ])])
        logger.info("[agent] start question_len=%d", len(question))
        yield state.snapshot()

        budget_used = 0
        while True:
            try:
                response = await self._invoke(state)
            except AgentError as e:
                state.status = AgentStatus.TERMINAL_ERROR
                state.error = str(e)
                yield state.snapshot()
                raise
            state.messages.append(response)
            state.step_count += 1
            text, calls = split_response(response)

            if not calls and text.strip():
                state.answer = text
                state.status = AgentStatus.TERMINAL_ANSWER
                logger.info("[agent] answer ready steps=%d chars=%d", state.step_count, len(text))
                yield state.snapshot()
                return

            if budget_used >= self.max_steps:
                state.status = AgentStatus.TERMINAL_ERROR
                state.error = f"step budget of {self.max_steps} exhausted"
                logger.warning("[agent] %s", state.error)
                yield state.snapshot()
                raise RequestTimeout("agent", f"{self.max_steps} steps")
            budget_used += 1

            if not calls:
                logger.info("[agent] empty model output; re-prompting")
                state.messages.append(ModelRequest(parts=[UserPromptPart(content=CONTINUE_PROMPT)]))
                yield state.snapshot()
                continue

            call = calls[0]
            state.status = AgentStatus.EXECUTING_TOOL
            yield state.snapshot()

            result = await self._run_tool(call)
            parts = [ToolReturnPart(tool_name=call.tool_name, content=result.content,
                                    tool_call_id=call.tool_call_id)]
            for extra in calls[1:]:
                logger.info("[agent] skipping extra tool call %s", extra.tool_name)
                parts.append(ToolReturnPart(tool_name=extra.tool_name, content=SKIPPED_CALL,
                                            tool_call_id=extra.tool_call_id))
            state.messages.append(ModelRequest(parts=parts))
            state.artifacts[call.tool_call_id] = result.artifact
            state.step_count += 1
            state.status = AgentStatus.AWAITING_MODEL
            yield state.snapshot()

    async def run(self, url: str, question: str) -> str:
        answer: Optional[str] = None
        async for state in self.iter(url, question):
            answer = state.answer
        return answer or ""


def build_agent(settings: Settings) -> YouTubeAgent:
    """Wire up the object graph for one process."""
    embedder = OpenAIEmbedder(model=settings.embed_model, dimensions=settings.embed_dimensions)
    vector_index = QdrantVectorIndex(
        make_client(settings.qdrant_url, settings.qdrant_api_key),
        collection_prefix=settings.collection_prefix,
    )
    if settings.compression_mode == "llm":
        compressor = ContextualCompressor(settings.chat_model)
    else:
        compressor = HeuristicCompressor(max_sentences=3)
    index = RetrievalIndex(
        embedder,
        vector_index,
        compressor=compressor,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
    )
    deps = AgentDeps(
        index=index,
        transcript_source=TranscriptSource(),
        video_info=VideoInfoClient(settings.youtube_api_key) if settings.youtube_api_key else None,
        use_compression=settings.use_compression,
        default_k=settings.default_k,
        transcript_max_retries=settings.transcript_max_retries,
        transcript_initial_delay=settings.transcript_initial_delay,
        transcript_backoff_multiplier=settings.transcript_backoff_multiplier,
    )
    logger.info("[agent] built model=%s max_steps=%d", settings.chat_model, settings.max_agent_steps)
    return YouTubeAgent(settings.chat_model, deps, max_steps=settings.max_agent_steps)
