"""Turn agent state snapshots into the client event stream.

Only the newest message of each snapshot is inspected. Dedup state lives on
the ``StreamSerializer`` instance, so one serializer serves one request:

- ``token``: the final answer, once per distinct content.
- ``tool_start``: suppressed while the tool name equals the previous one.
- ``tool_end``: once per tool name.
- exactly one ``done`` or ``error`` closes the stream.
"""

import json
import logging
from contextlib import aclosing
from typing import AsyncIterator, List, Optional, Set

from pydantic_ai.messages import ModelRequest, ModelResponse, ToolReturnPart

from models import (
    DoneEvent,
    ErrorEvent,
    OrchestratorState,
    StreamEvent,
    TokenEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from services.sanitize import escape_markup, safe_error_message, sanitize_tool_args, truncate
from .agent import YouTubeAgent, split_response

logger = logging.getLogger(__name__)


class StreamSerializer:

    def __init__(self):
        self._buffer = ""
        self._last_tool = ""
        self._sent: Set[str] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, state: OrchestratorState) -> List[StreamEvent]:
        if self._closed or not state.messages:
            return []
        last = state.messages[-1]
        if isinstance(last, ModelResponse):
            # a terminal state never executes the calls it ends on
            return self._from_response(last, announce_tools=not state.terminal)
        if isinstance(last, ModelRequest):
            return self._from_tool_results(last)
        return []

    def _from_response(self, response: ModelResponse, announce_tools: bool = True) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        text, calls = split_response(response)
        if text and not calls:
            key = "ai-" + json.dumps(text)
            if text != self._buffer and key not in self._sent:
                self._buffer = text
                self._sent.add(key)
                events.append(TokenEvent(content=escape_markup(text)))
                logger.info("[stream] sent answer: %s", text[:100])
        if calls and announce_tools:
            call = calls[0]
            # Keyed on the tool name only, so back-to-back calls to one tool share a tool_start
            if call.tool_name != self._last_tool:
                self._last_tool = call.tool_name
                try:
                    args = call.args_as_dict()
                except (ValueError, AssertionError):
                    args = {}
                events.append(ToolStartEvent(
                    tool=escape_markup(call.tool_name),
                    args=sanitize_tool_args(args),
                ))
                logger.info("[stream] tool started: %s", call.tool_name)
        return events

    def _from_tool_results(self, request: ModelRequest) -> List[StreamEvent]:
        returns = [p for p in request.parts if isinstance(p, ToolReturnPart)]
        if not returns:
            return []
        # The first return belongs to the executed call; the rest were skipped
        part = returns[0]
        key = f"tool-{part.tool_name}"
        if key in self._sent:
            return []
        self._sent.add(key)
        if isinstance(part.content, str):
            result = truncate(escape_markup(part.content))
        else:
            result = "Result received"
        logger.info("[stream] tool completed: %s", part.tool_name)
        return [ToolEndEvent(tool=escape_markup(part.tool_name), result=result)]

    def finish(self) -> Optional[DoneEvent]:
        if self._closed:
            return None
        self._closed = True
        return DoneEvent()

    def fail(self, error: BaseException) -> Optional[ErrorEvent]:
        if self._closed:
            return None
        self._closed = True
        return ErrorEvent(message=safe_error_message(error))


async def stream_events(agent: YouTubeAgent, url: str, question: str) -> AsyncIterator[StreamEvent]:
    """Run ``agent`` and yield events as each state transition happens."""
    serializer = StreamSerializer()
    try:
        async with aclosing(agent.iter(url, question)) as states:
            async for state in states:
                for event in serializer.feed(state):
                    yield event
    except Exception as e:
        logger.exception("[stream] request failed")
        error = serializer.fail(e)
        if error is not None:
            yield error
        return
    done = serializer.finish()
    if done is not None:
        yield done


def encode_sse(event: StreamEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"
