from .agent import SYSTEM_PROMPT, YouTubeAgent, build_agent
from .stream import StreamSerializer, encode_sse, stream_events
from .tools import TOOLS, AgentDeps, ToolSpec, execute_tool
