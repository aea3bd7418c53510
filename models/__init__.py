from .youtube import (VideoMeta, TranscriptSegment, TranscriptDocument, Chunk, IndexResult,
    NamespaceInfo, RetrievedPassage, QueryResult)
from .agent import (ToolName, AgentStatus, ExtractVideoIdArgs, IsVideoIndexedArgs,
    FetchTranscriptArgs, IndexContentArgs, QueryVideoContentArgs, ToolResult, OrchestratorState)
from .events import (ToolStartEvent, ToolEndEvent, TokenEvent, DoneEvent, ErrorEvent,
    StreamEvent)
