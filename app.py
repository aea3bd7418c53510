import asyncio
import logging
import sys

from dotenv import load_dotenv
load_dotenv()

from agent import build_agent, stream_events
from config import get_settings
from models import ErrorEvent, TokenEvent, ToolEndEvent, ToolStartEvent

DEFAULT_QUESTION = "Summarize this video."


async def answer(url: str, question: str) -> int:
    settings = get_settings()
    agent = build_agent(settings)
    print(f"[answer] start url={url} question_len={len(question)}")
    status = 0
    async for event in stream_events(agent, url, question):
        if isinstance(event, ToolStartEvent):
            print(f"[tool] {event.tool} {event.args}")
        elif isinstance(event, ToolEndEvent):
            print(f"[tool] {event.tool} done: {event.result}")
        elif isinstance(event, TokenEvent):
            print(event.content)
        elif isinstance(event, ErrorEvent):
            print(f"[error] {event.message}", file=sys.stderr)
            status = 1
    return status


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python app.py <YOUTUBE_URL_OR_ID> [question ...]")
        sys.exit(1)
    logging.basicConfig(level=get_settings().log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    target = sys.argv[1]
    q = " ".join(sys.argv[2:]) or DEFAULT_QUESTION
    sys.exit(asyncio.run(answer(target, q)))
