"""Tests for the transcript source adapter."""

from unittest.mock import MagicMock, Mock

import pytest
from youtube_transcript_api import NoTranscriptFound, TranscriptsDisabled, VideoUnavailable

from conftest import FakeTranscriptSource
from models import TranscriptSegment
from services.errors import InvalidIdentifier, TranscriptUnavailable, ValidationFailed, VideoNotFound
from services.youtube import (TranscriptSource, TranscriptThrottle, extract_video_id, fetch_transcript,
    is_valid_language_code)

VIDEO_ID = "dQw4w9WgXcQ"


# =============================================================================
# extract_video_id
# =============================================================================


@pytest.mark.parametrize(
    "value",
    [
        VIDEO_ID,
        f"https://www.youtube.com/watch?v={VIDEO_ID}",
        f"http://youtube.com/watch?v={VIDEO_ID}&list=PL123",
        f"youtube.com/watch?v={VIDEO_ID}",
        f"https://youtu.be/{VIDEO_ID}",
        f"https://youtu.be/{VIDEO_ID}?t=5",
        f"https://www.youtube.com/embed/{VIDEO_ID}",
        f"https://m.youtube.com/watch?v={VIDEO_ID}",
    ],
)
def test_extract_video_id_accepts_known_shapes(value):
    assert extract_video_id(value) == VIDEO_ID


@pytest.mark.parametrize(
    "value",
    [
        "",
        "   ",
        None,
        "not a url",
        "dQw4w9WgXc",
        "dQw4w9WgXcQQ",
        "dQw4w9WgXcQ\n",
        "https://vimeo.com/123456789",
        "https://www.youtube.com/watch?v=short",
        f"https://example.com/?v={VIDEO_ID}",
    ],
)
def test_extract_video_id_rejects_everything_else(value):
    assert extract_video_id(value) is None


def test_short_link_with_timestamp():
    assert extract_video_id("https://youtu.be/dQw4w9WgXcQ?t=5") == "dQw4w9WgXcQ"


def test_language_codes():
    assert is_valid_language_code("en")
    assert is_valid_language_code("zh-TW")
    assert not is_valid_language_code("klingon")


# =============================================================================
# fetch_transcript
# =============================================================================


async def test_fetch_joins_non_empty_segments():
    source = FakeTranscriptSource([
        TranscriptSegment(text=" Hello ", start=0.0),
        TranscriptSegment(text="", start=1.0),
        TranscriptSegment(text="world", start=2.0),
    ])

    doc = await fetch_transcript(f"https://youtu.be/{VIDEO_ID}", source=source, initial_delay=0)

    assert doc.video_id == VIDEO_ID
    assert doc.text == "Hello world"
    assert [s.start for s in doc.segments] == [0.0, 2.0]
    assert source.calls == [(VIDEO_ID, "en")]


async def test_fetch_retries_with_observer():
    source = FakeTranscriptSource(outcomes=[
        RuntimeError("flaky"),
        RuntimeError("flaky again"),
        [TranscriptSegment(text="finally", start=0.0)],
    ])
    seen = []

    doc = await fetch_transcript(
        VIDEO_ID, source=source, max_retries=3, initial_delay=0,
        on_retry=lambda attempt, total: seen.append((attempt, total)),
    )

    assert doc.text == "finally"
    assert len(source.calls) == 3
    assert seen == [(1, 3), (2, 3)]


async def test_backoff_delays_grow_geometrically():
    source = FakeTranscriptSource(outcomes=[
        RuntimeError("down"),
        RuntimeError("down"),
        RuntimeError("down"),
        [TranscriptSegment(text="back up", start=0.0)],
    ])
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    doc = await fetch_transcript(
        VIDEO_ID, source=source, max_retries=3, initial_delay=1, backoff_multiplier=2, sleep=record_sleep,
    )

    assert doc.text == "back up"
    assert delays == [1.0, 2.0, 4.0]


async def test_observer_errors_do_not_change_outcome():
    source = FakeTranscriptSource(outcomes=[RuntimeError("flaky"), [TranscriptSegment(text="ok")]])

    def broken_observer(attempt, total):
        raise ValueError("observer blew up")

    doc = await fetch_transcript(VIDEO_ID, source=source, initial_delay=0, on_retry=broken_observer)

    assert doc.text == "ok"


async def test_fetch_gives_up_after_max_retries():
    source = FakeTranscriptSource(outcomes=[RuntimeError("down")] * 5)

    with pytest.raises(TranscriptUnavailable) as exc_info:
        await fetch_transcript(VIDEO_ID, source=source, max_retries=2, initial_delay=0)

    assert len(source.calls) == 3
    assert isinstance(exc_info.value.__cause__, RuntimeError)


async def test_video_not_found_is_not_retried():
    source = FakeTranscriptSource(outcomes=[VideoNotFound(VIDEO_ID)])

    with pytest.raises(VideoNotFound):
        await fetch_transcript(VIDEO_ID, source=source, max_retries=3, initial_delay=0)

    assert len(source.calls) == 1


async def test_empty_transcript_is_unavailable():
    source = FakeTranscriptSource([TranscriptSegment(text="  "), TranscriptSegment(text="")])

    with pytest.raises(TranscriptUnavailable):
        await fetch_transcript(VIDEO_ID, source=source, initial_delay=0)


async def test_no_segments_is_unavailable():
    with pytest.raises(TranscriptUnavailable):
        await fetch_transcript(VIDEO_ID, source=FakeTranscriptSource([]), initial_delay=0)


async def test_invalid_inputs():
    with pytest.raises(ValidationFailed):
        await fetch_transcript("", source=FakeTranscriptSource())
    with pytest.raises(InvalidIdentifier):
        await fetch_transcript("https://vimeo.com/1", source=FakeTranscriptSource())


# =============================================================================
# TranscriptSource (youtube-transcript-api mocked)
# =============================================================================


def _api_with(transcript_list):
    api = Mock()
    api.list = Mock(return_value=transcript_list)
    return api


def test_source_prefers_manual_transcript():
    transcript = Mock()
    transcript.fetch.return_value.to_raw_data.return_value = [
        {"text": "hi there", "start": 1.5, "duration": 2.0},
    ]
    transcripts = Mock()
    transcripts.find_transcript = Mock(return_value=transcript)
    source = TranscriptSource(api=_api_with(transcripts), throttle=TranscriptThrottle(max_calls=100))

    segments = source.fetch(VIDEO_ID, "es")

    assert segments == [TranscriptSegment(text="hi there", start=1.5, duration=2.0)]
    transcripts.find_transcript.assert_called_once_with(["es", "en", "en-US", "en-GB"])


def test_source_falls_back_to_generated_transcript():
    generated = Mock()
    generated.fetch.return_value.to_raw_data.return_value = [{"text": "auto", "start": 0.0, "duration": 1.0}]
    transcripts = Mock()
    transcripts.find_transcript = Mock(side_effect=NoTranscriptFound(VIDEO_ID, ["en"], MagicMock()))
    transcripts.find_generated_transcript = Mock(return_value=generated)
    source = TranscriptSource(api=_api_with(transcripts), throttle=TranscriptThrottle(max_calls=100))

    segments = source.fetch(VIDEO_ID)

    assert [s.text for s in segments] == ["auto"]


def test_source_maps_library_errors():
    api = Mock()
    api.list = Mock(side_effect=VideoUnavailable(VIDEO_ID))
    with pytest.raises(VideoNotFound):
        TranscriptSource(api=api, throttle=TranscriptThrottle(max_calls=100)).fetch(VIDEO_ID)

    api.list = Mock(side_effect=TranscriptsDisabled(VIDEO_ID))
    with pytest.raises(TranscriptUnavailable):
        TranscriptSource(api=api, throttle=TranscriptThrottle(max_calls=100)).fetch(VIDEO_ID)


def test_throttle_waits_for_oldest_slot():
    now = [0.0]
    sleeps = []

    def sleep(seconds):
        sleeps.append(seconds)
        now[0] += seconds

    throttle = TranscriptThrottle(max_calls=2, window=10.0, clock=lambda: now[0], sleep=sleep)

    assert throttle.acquire() == 0.0
    now[0] = 4.0
    assert throttle.acquire() == 0.0
    waited = throttle.acquire()

    assert sleeps == [6.0]
    assert waited == 6.0
