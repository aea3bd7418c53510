from .youtube import (extract_video_id, fetch_transcript, is_valid_language_code,
    TranscriptSource, VideoInfoClient, SUPPORTED_LANGUAGES)
from .chunker import split_text, split_transcript
from .openai import OpenAIEmbedder
from .store import QdrantVectorIndex, make_client, point_id
from .compression import ContextualCompressor, HeuristicCompressor, extract_relevant_sentences, quick_compress
from .rag import RetrievalIndex, format_context, format_timestamp
from .rate_limit import RateLimiter, check_admission, get_client_identifier
