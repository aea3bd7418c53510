"""HTTP surface: ``POST /api/ask`` streams agent events as Server-Sent Events.

Run with ``uvicorn server:app`` or ``python server.py``.
"""

import asyncio
import logging
from contextlib import aclosing, asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

load_dotenv()

from agent import YouTubeAgent, build_agent, encode_sse, stream_events
from config import Settings, get_settings
from services.errors import AdmissionDenied, ValidationFailed, YouTubeQAError, error_response
from services.rate_limit import (RateLimiter, RateLimitInfo, check_admission, get_client_identifier,
    make_counter_store)

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


class AskRequest(BaseModel):
    url: str = ""
    question: str = ""


def validate_ask(body: AskRequest, max_question_length: int = 500) -> AskRequest:
    url, question = body.url.strip(), body.question.strip()
    if not url:
        raise ValidationFailed("URL parameter is required and cannot be empty")
    if not question:
        raise ValidationFailed("Question parameter is required and cannot be empty")
    if "youtube.com" not in url and "youtu.be" not in url:
        raise ValidationFailed("Invalid YouTube URL. Please provide a valid youtube.com or youtu.be URL")
    if len(body.question) > max_question_length:
        raise ValidationFailed(f"Question is too long. Maximum {max_question_length} characters allowed")
    return AskRequest(url=url, question=question)


def rate_limit_headers(info: RateLimitInfo) -> dict:
    reset = datetime.fromtimestamp(info.reset_time, tz=timezone.utc)
    return {
        "X-RateLimit-Limit": str(info.limit),
        "X-RateLimit-Remaining": str(info.remaining),
        "X-RateLimit-Reset": reset.isoformat().replace("+00:00", "Z"),
    }


def admit(request: Request) -> RateLimitInfo:
    settings: Settings = request.app.state.settings
    limiter: RateLimiter = request.app.state.limiter
    peer = request.client.host if request.client else None
    client_id = get_client_identifier(
        peer,
        request.headers.get("x-forwarded-for"),
        trust_proxy=settings.trust_proxy,
        max_proxy_hops=settings.max_proxy_hops,
    )
    request.state.rate_limit = limiter.get_info(client_id)
    return check_admission(limiter, client_id)


async def _sweep_rate_limits(limiter: RateLimiter, interval: float):
    while True:
        await asyncio.sleep(interval)
        limiter.cleanup()


def create_app(settings: Optional[Settings] = None, agent: Optional[YouTubeAgent] = None,
               limiter: Optional[RateLimiter] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.agent is None:
            app.state.agent = build_agent(settings)
        await app.state.agent.deps.index.vector_index.wait_for_ready(settings.qdrant_ready_timeout)
        sweeper = asyncio.create_task(
            _sweep_rate_limits(app.state.limiter, settings.rate_limit_window_seconds),
            name="ytqa-rate-limit-sweep",
        )
        logger.info("[api] ready")
        yield
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper

    app = FastAPI(title="YouTube Q&A", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.agent = agent
    app.state.limiter = limiter or RateLimiter(
        settings.rate_limit_max_requests,
        settings.rate_limit_window_seconds,
        store=make_counter_store(settings.rate_limit_store),
    )

    @app.exception_handler(AdmissionDenied)
    async def admission_denied(request: Request, exc: AdmissionDenied):
        headers = {"Retry-After": str(exc.retry_after)}
        info = getattr(request.state, "rate_limit", None)
        if info is not None:
            headers.update(rate_limit_headers(info))
        content = {**error_response(exc), "retry_after": exc.retry_after}
        return JSONResponse(content, status_code=exc.status_code, headers=headers)

    @app.exception_handler(YouTubeQAError)
    async def domain_error(request: Request, exc: YouTubeQAError):
        return JSONResponse(error_response(exc), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        error = ValidationFailed("request body must be a JSON object with string 'url' and 'question'")
        return JSONResponse(error_response(error), status_code=error.status_code)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.post("/api/ask")
    async def ask(body: AskRequest, request: Request, rate: RateLimitInfo = Depends(admit)):
        body = validate_ask(body, settings.max_question_length)
        logger.info("[api] ask url=%s question_len=%d", body.url, len(body.question))
        agent: YouTubeAgent = request.app.state.agent

        async def event_source():
            async with aclosing(stream_events(agent, body.url, body.question)) as events:
                async for event in events:
                    if await request.is_disconnected():
                        logger.info("[api] client disconnected; stopping stream")
                        break
                    yield encode_sse(event)
            logger.info("[api] stream closed")

        return StreamingResponse(
            event_source(),
            media_type="text/event-stream",
            headers={**SSE_HEADERS, **rate_limit_headers(rate)},
        )

    return app


app = create_app()


def main():
    settings = get_settings()
    logging.basicConfig(level=settings.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
