"""Settings for the YouTube Q&A service.

Values come from the environment (prefix ``YTQA_``); the entry points load
a ``.env`` file first with python-dotenv. ``OPENAI_API_KEY`` is read by the
OpenAI client itself; ``QDRANT_URL``, ``QDRANT_API_KEY`` and
``YOUTUBE_API_KEY`` are accepted with or without the prefix.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="YTQA_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Models
    chat_model: str = Field(
        default="openai:gpt-4o-mini",
        description="pydantic-ai model name used by the agent and the LLM compressor.",
    )
    embed_model: str = Field(default="text-embedding-3-small")
    embed_dimensions: Optional[int] = Field(
        default=None, description="Optional reduced embedding size (text-embedding-3 models only)."
    )

    # Vector store
    qdrant_url: str = Field(
        default="http://localhost:6333",
        validation_alias=AliasChoices("QDRANT_URL", "YTQA_QDRANT_URL"),
        description="Qdrant server URL, or \":memory:\" for an in-process store.",
    )
    qdrant_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("QDRANT_API_KEY", "YTQA_QDRANT_API_KEY")
    )
    collection_prefix: str = Field(default="yt_")
    qdrant_ready_timeout: float = Field(default=15.0, gt=0, description="Seconds to wait for Qdrant at startup.")

    # YouTube Data API, only used for video titles in chunk metadata
    youtube_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("YOUTUBE_API_KEY", "YTQA_YOUTUBE_API_KEY")
    )

    # Chunking / retrieval
    chunk_size: int = Field(default=2000, gt=0)
    chunk_overlap: int = Field(default=400, ge=0)
    default_k: int = Field(default=4, ge=1, le=10)
    use_compression: bool = False
    compression_mode: Literal["heuristic", "llm"] = "heuristic"

    # Agent
    max_agent_steps: int = Field(default=10, ge=1)

    # Transcript fetching
    transcript_max_retries: int = Field(default=3, ge=0)
    transcript_initial_delay: float = Field(default=1.0, ge=0.0, description="Seconds.")
    transcript_backoff_multiplier: float = Field(default=2.0, ge=1.0)

    # Admission control
    rate_limit_max_requests: int = Field(default=10, gt=0)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_store: Literal["memory"] = "memory"
    trust_proxy: bool = False
    max_proxy_hops: int = Field(default=1, ge=0)

    # Request validation
    max_question_length: int = Field(default=500, gt=0)

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    @model_validator(mode="after")
    def validate_overlap(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be less than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
