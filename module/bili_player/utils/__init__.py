# Utils module
from .errors import (
    MusicError,
    InvalidUrlError,
    ExtractionError,
    VideoUnavailableError,
    ExtractionNetworkError,
    ExtractionTimeoutError,
    ToolMissingError,
    PipelineError,
    ConnectionTimeoutError,
    ProcessInactiveError,
    ProcessExitError,
    ResourceCreationError,
    TranscoderMissingError,
    PipelineSupersededError,
    VoiceConnectionError,
    suggest_fix,
)
from .decorators import publishes_state, log_operation
from .urls import extract_video_id, is_bilibili_url, normalize_url

__all__ = [
    # Errors
    "MusicError",
    "InvalidUrlError",
    "ExtractionError",
    "VideoUnavailableError",
    "ExtractionNetworkError",
    "ExtractionTimeoutError",
    "ToolMissingError",
    "PipelineError",
    "ConnectionTimeoutError",
    "ProcessInactiveError",
    "ProcessExitError",
    "ResourceCreationError",
    "TranscoderMissingError",
    "PipelineSupersededError",
    "VoiceConnectionError",
    "suggest_fix",
    # Decorators
    "publishes_state",
    "log_operation",
    # URLs
    "extract_video_id",
    "is_bilibili_url",
    "normalize_url",
]
