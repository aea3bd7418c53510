"""Error taxonomy for the YouTube Q&A service.

Every error carries the HTTP status it maps to so the server layer can
translate it without a lookup table.
"""

from typing import Any, Dict


class YouTubeQAError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    title = "Server Error"


class ValidationFailed(YouTubeQAError):
    status_code = 400
    title = "Validation Error"

    def __init__(self, message: str):
        self.detail = message
        super().__init__(f"Validation error: {message}")


class InvalidIdentifier(YouTubeQAError):
    status_code = 400
    title = "Invalid Video"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid YouTube URL or video ID: {value}")


class VideoNotFound(YouTubeQAError):
    status_code = 404
    title = "Video Not Found"

    def __init__(self, video_id: str):
        self.video_id = video_id
        super().__init__(f"Video not found: {video_id}")


class TranscriptUnavailable(YouTubeQAError):
    status_code = 404
    title = "Transcript Not Found"

    def __init__(self, video_id: str, reason: str = ""):
        self.video_id = video_id
        message = f"No transcript available for video: {video_id}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class IndexingFailed(YouTubeQAError):
    title = "Indexing Error"

    def __init__(self, message: str):
        self.detail = message
        super().__init__(f"Indexing failed: {message}")


class QueryFailed(YouTubeQAError):
    title = "Query Error"

    def __init__(self, message: str):
        self.detail = message
        super().__init__(f"Query failed: {message}")


class RequestTimeout(YouTubeQAError):
    status_code = 504
    title = "Timeout Error"

    def __init__(self, operation: str, limit: str):
        super().__init__(f"Operation '{operation}' timeout after {limit}")


class AdmissionDenied(YouTubeQAError):
    status_code = 429
    title = "Rate Limit Exceeded"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")


class AgentError(YouTubeQAError):
    """The model call itself failed; the request cannot continue."""

    title = "Agent Error"


def error_response(error: BaseException) -> Dict[str, Any]:
    """Map an exception to ``{error, message, status_code}``.

    Unknown exceptions get a generic message so internal details stay in
    the server logs.
    """
    if isinstance(error, YouTubeQAError):
        return {
            "error": error.title,
            "message": str(error),
            "status_code": error.status_code,
        }
    return {
        "error": "Server Error",
        "message": "An unexpected error occurred",
        "status_code": 500,
    }
