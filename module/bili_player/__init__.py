"""
B站音樂播放器模組

每個 Discord 伺服器一個播放器，提供:
- 佇列與循環模式（單曲 / 清單 / 不循環）
- yt-dlp 解析 + FFmpeg 即時轉碼串流
- 管線世代計數，避免重複啟動的程序同時存活
- 狀態匯流排，面板只渲染最新狀態
"""

# Core
from .core.queue import Track, TrackQueue
from .core.state import LoopMode, PlayerStatus, PlayerState
from .core.events import StateBus
from .core.player import GuildPlayer
from .core.results import CommandResult, Outcome
from .core.registry import PlayerRegistry

# Extractor
from .extractor.yt_dlp import BilibiliExtractor
from .extractor.bilibili_api import BilibiliSearchClient

# FFmpeg
from .ffmpeg.transcoder import FFmpegTranscoder

# UI
from .ui.embeds import EmbedBuilder
from .ui.buttons import PlayerControlView, PaginationView, SearchSelectView
from .ui.interface import PlayerInterface

# Utils
from .utils.errors import (
    MusicError,
    ExtractionError,
    PipelineError,
    VoiceConnectionError,
    suggest_fix,
)

# Constants
from .constants import (
    AUTOPLAY_COUNT,
    AUTOPLAY_KEYWORD,
    EMBED_UPDATE_INTERVAL,
    PLAYLIST_PER_PAGE,
)

__all__ = [
    # Core
    "Track",
    "TrackQueue",
    "LoopMode",
    "PlayerStatus",
    "PlayerState",
    "StateBus",
    "GuildPlayer",
    "CommandResult",
    "Outcome",
    "PlayerRegistry",
    # Extractor
    "BilibiliExtractor",
    "BilibiliSearchClient",
    # FFmpeg
    "FFmpegTranscoder",
    # UI
    "EmbedBuilder",
    "PlayerControlView",
    "PaginationView",
    "SearchSelectView",
    "PlayerInterface",
    # Utils
    "MusicError",
    "ExtractionError",
    "PipelineError",
    "VoiceConnectionError",
    "suggest_fix",
    # Constants
    "AUTOPLAY_COUNT",
    "AUTOPLAY_KEYWORD",
    "EMBED_UPDATE_INTERVAL",
    "PLAYLIST_PER_PAGE",
]
