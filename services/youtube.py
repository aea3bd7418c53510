import asyncio
import logging
import re
import threading
import time
from typing import Awaitable, Callable, List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import AsyncRetrying, retry_if_not_exception_type, stop_after_attempt, wait_exponential
from youtube_transcript_api import (NoTranscriptFound, TranscriptsDisabled, VideoUnavailable,
    YouTubeTranscriptApi)

from models import TranscriptDocument, TranscriptSegment, VideoMeta
from .errors import InvalidIdentifier, TranscriptUnavailable, ValidationFailed, VideoNotFound

logger = logging.getLogger(__name__)

YOUTUBE_WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
VIDEO_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")

YOUTUBE_URL_PATTERNS = {
    "standard": re.compile(
        r"(?:https?://)?(?:www\.)?youtube\.com/watch\?v=([a-zA-Z0-9_-]{11})(?:[&?].*)?$"),
    "short": re.compile(r"(?:https?://)?(?:www\.)?youtu\.be/([a-zA-Z0-9_-]{11})(?:\?.*)?$"),
    "embed": re.compile(
        r"(?:https?://)?(?:www\.)?youtube\.com/embed/([a-zA-Z0-9_-]{11})(?:\?.*)?$"),
    "mobile": re.compile(
        r"(?:https?://)?m\.youtube\.com/watch\?v=([a-zA-Z0-9_-]{11})(?:[&?].*)?$"),
}

# Languages YouTube commonly has manual or generated captions for
SUPPORTED_LANGUAGES = (
    "en", "es", "fr", "de", "pt", "it", "ru", "ja", "ko", "zh", "zh-TW", "ar",
    "hi", "nl", "pl", "tr", "vi", "id", "th", "sv", "no", "da", "fi",
)

# Called before each retry with (attempt, max_retries)
RetryObserver = Callable[[int, int], None]


def extract_video_id(value: Optional[str]) -> Optional[str]:
    """Return the 11-character video id for a URL or bare id, else None."""
    if not value or not value.strip():
        return None
    if VIDEO_ID_RE.fullmatch(value):
        return value
    for pattern in YOUTUBE_URL_PATTERNS.values():
        match = pattern.search(value)
        if match:
            return match.group(1)
    return None


def is_valid_language_code(code: str) -> bool:
    return code in SUPPORTED_LANGUAGES


def _language_preferences(language: str) -> List[str]:
    prefs = [language] if language else []
    for fallback in ("en", "en-US", "en-GB"):
        if fallback not in prefs:
            prefs.append(fallback)
    return prefs


# ----- Throttle for the YouTube transcript endpoint -----
class TranscriptThrottle:
    """Sliding window throttle: at most ``max_calls`` per ``window`` seconds.

    Blocks the calling thread; ``fetch_transcript`` runs ``TranscriptSource.fetch`` off the event loop.
    """

    def __init__(self, max_calls: int = 5, window: float = 10.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._stamps: List[float] = []
        self._lock = threading.Lock()

    def acquire(self) -> float:
        """Take a slot, sleeping until one frees up. Returns seconds waited."""
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                self._stamps = [s for s in self._stamps if now - s < self.window]
                if len(self._stamps) < self.max_calls:
                    self._stamps.append(now)
                    return waited
                delay = self.window - (now - self._stamps[0])

            # sleep outside the lock
            if delay > 0:
                logger.info("[throttle] transcript api busy, waiting %.2fs", delay)
                self._sleep(delay)
                waited += delay


class TranscriptSource:
    """Blocking access to YouTube captions through youtube-transcript-api."""

    def __init__(self, api: Optional[YouTubeTranscriptApi] = None,
                 throttle: Optional[TranscriptThrottle] = None):
        self._api = api or YouTubeTranscriptApi()
        self._throttle = throttle or TranscriptThrottle()

    def fetch(self, video_id: str, language: str = "en") -> List[TranscriptSegment]:
        logger.info("[transcript] fetching video_id=%s language=%s", video_id, language)
        self._throttle.acquire()
        languages = _language_preferences(language)
        try:
            transcripts = self._api.list(video_id)
            try:
                t = transcripts.find_transcript(languages)
            except NoTranscriptFound:
                t = transcripts.find_generated_transcript(languages)
            segs = t.fetch().to_raw_data()
        except VideoUnavailable as e:
            raise VideoNotFound(video_id) from e
        except (TranscriptsDisabled, NoTranscriptFound) as e:
            raise TranscriptUnavailable(video_id, "captions are disabled or missing") from e
        return [
            TranscriptSegment(text=s.get("text", ""), start=s.get("start"), duration=s.get("duration"))
            for s in segs
        ]


def _notify(on_retry: Optional[RetryObserver], video_id: str, max_retries: int):
    def before_sleep(retry_state) -> None:
        attempt = retry_state.attempt_number
        logger.info("[transcript] retry %d/%d for video_id=%s", attempt + 1, max_retries + 1, video_id)
        if on_retry is None:
            return
        try:
            on_retry(attempt, max_retries)
        except Exception:
            logger.exception("[transcript] retry observer failed; ignoring")
    return before_sleep


async def fetch_transcript(
    video_url_or_id: str,
    *,
    language: str = "en",
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
    on_retry: Optional[RetryObserver] = None,
    source: Optional[TranscriptSource] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> TranscriptDocument:
    """Fetch a transcript with exponential backoff.

    The delay before retry ``n`` (0-based) is ``initial_delay * backoff_multiplier**n``
    seconds. ``VideoNotFound`` and ``TranscriptUnavailable`` raised by the source
    are final and never retried.
    """
    if not video_url_or_id or not video_url_or_id.strip():
        raise ValidationFailed("Video URL or ID is required")
    video_id = extract_video_id(video_url_or_id)
    if not video_id:
        raise InvalidIdentifier(video_url_or_id)

    if language and not is_valid_language_code(language):
        logger.warning("[transcript] language %r is not in the common supported list; "
                       "transcript may not be available", language)

    source = source or TranscriptSource()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=initial_delay, exp_base=backoff_multiplier, min=0),
        retry=retry_if_not_exception_type((VideoNotFound, TranscriptUnavailable)),
        before_sleep=_notify(on_retry, video_id, max_retries),
        sleep=sleep,
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                segments = await asyncio.to_thread(source.fetch, video_id, language)
    except (VideoNotFound, TranscriptUnavailable):
        raise
    except Exception as e:
        logger.warning("[transcript] giving up on video_id=%s after %d attempts: %s",
                       video_id, max_retries + 1, e)
        raise TranscriptUnavailable(video_id, f"failed to fetch transcript: {e}") from e

    kept = [s.model_copy(update={"text": s.text.strip()}) for s in segments if s.text and s.text.strip()]
    if not kept:
        raise TranscriptUnavailable(video_id, "transcript is empty")
    text = " ".join(s.text for s in kept)
    logger.info("[transcript] ok video_id=%s segments=%d length=%d", video_id, len(kept), len(text))
    return TranscriptDocument(video_id=video_id, language=language, segments=kept, text=text)


# ----- Video metadata (YouTube Data API, optional) -----
class VideoInfoClient:
    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("YOUTUBE_API_KEY is required for video metadata")
        self._api_key = api_key
        self._client = None

    def _get_client(self):
        if not self._client:
            self._client = build("youtube", "v3", developerKey=self._api_key,
                                 static_discovery=False, cache_discovery=False)
        return self._client

    def get_video_meta(self, video_id: str) -> VideoMeta:
        logger.info("[yt] get_video_meta video_id=%s", video_id)
        try:
            resp = self._get_client().videos().list(part="snippet", id=video_id).execute()
        except HttpError as e:
            if getattr(e, "resp", None) is not None and e.resp.status == 404:
                raise VideoNotFound(video_id) from e
            raise
        items = resp.get("items", [])
        if not items:
            raise VideoNotFound(video_id)
        snippet = items[0]["snippet"]
        meta = VideoMeta(
            video_id=video_id,
            title=snippet.get("title", ""),
            channel=snippet.get("channelTitle"),
            channel_id=str(snippet.get("channelId") or ""),
            url=YOUTUBE_WATCH_URL_TEMPLATE.format(video_id=video_id),
        )
        logger.info("[yt] title=%r channel_id=%s", meta.title, meta.channel_id)
        return meta
