"""
B站播放器常數設定

音訊監控相關的門檻值可透過環境變數（.env）覆寫。
"""

import os


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


# ==================== 外部工具 ====================
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
YTDLP_PATH = os.getenv("YTDLP_PATH", "yt-dlp")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
BILIBILI_REFERER = "https://www.bilibili.com/"

# ==================== 擷取 ====================
YTDLP_EXTRACT_TIMEOUT = 30          # 每次呼叫 yt-dlp 的逾時（秒）
YTDLP_VERSION_TIMEOUT = 5
YTDLP_KILL_GRACE = 2                # SIGTERM 後等待多久才 SIGKILL
EXTRACT_MAX_RETRIES = 2
EXTRACT_RETRY_BASE_DELAY = 3        # 線性退避：(attempt + 1) * base
INFO_CACHE_TTL = 30 * 60
INFO_CACHE_MAX_SIZE = 100

# ==================== 搜尋 ====================
SEARCH_API_URL = "https://api.bilibili.com/x/web-interface/search/type"
SEARCH_TIMEOUT = 10
SEARCH_CANDIDATE_TIMEOUT = 8
SEARCH_PAGE_SIZE = 50
SEARCH_RANDOM_PAGE_MAX = 10
HISTORY_MAX_SIZE = 50
AUTOPLAY_KEYWORD = "哈基米"
AUTOPLAY_COUNT = 10

# ==================== 音訊管線 ====================
SAMPLE_RATE = 48000
CHANNELS = 2
FRAME_SIZE = 3840                   # 20ms s16le stereo @ 48kHz
CONNECTION_READY_TIMEOUT = 15
PROCESS_KILL_GRACE = 1
FIRST_CHUNK_TIMEOUT = 20
FFMPEG_INACTIVE_WARNING = _env_float("FFMPEG_INACTIVE_WARNING", 15)
FFMPEG_INACTIVE_KILL = _env_float("FFMPEG_INACTIVE_KILL", 45)
FFMPEG_CHECK_INTERVAL = _env_float("FFMPEG_CHECK_INTERVAL", 5)
GRACEFUL_EXIT_CODES = frozenset({0, 137, 143, 15, -9, -15})

# ==================== 播放器 ====================
FALSE_IDLE_THRESHOLD = 3            # 實際播放少於此秒數視為假結束
FALSE_IDLE_TAIL = 2                 # 距離片尾小於此秒數仍視為正常結束
MAX_TRACK_RETRIES = 2
RETRY_DELAY = 2

# ==================== 語音 ====================
VOICE_CONNECT_TIMEOUT = 15
VOICE_CONNECT_RETRIES = 3
VOICE_RETRY_BASE_DELAY = 2

# ==================== UI ====================
PLAYLIST_PER_PAGE = 10
PAGINATION_VIEW_TIMEOUT = 120
SEARCH_VIEW_TIMEOUT = 60
PROGRESS_BAR_LENGTH = 15
PROGRESS_BAR_FILLED = "▓"
PROGRESS_BAR_EMPTY = "░"
EMBED_UPDATE_INTERVAL = 10
