"""
B站播放器統一錯誤系統

所有錯誤都繼承自 MusicError，包含：
- message: 技術性錯誤訊息（給開發者 / log）
- user_message: 使用者友善的訊息（給 Discord 顯示）

另提供 suggest_fix()：依錯誤訊息關鍵字給出可操作的建議。
"""

from typing import Optional


class MusicError(Exception):
    """播放器錯誤基類"""

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.message = message
        self.user_message = user_message or message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# ==================== 輸入錯誤 ====================

class InvalidUrlError(MusicError):
    """不是有效的 B站影片連結"""

    def __init__(self, url: str):
        self.url = url
        super().__init__(
            message=f"Invalid Bilibili URL: {url}",
            user_message="請提供有效的 B站影片連結"
        )


# ==================== 擷取錯誤 ====================

class ExtractionError(MusicError):
    """yt-dlp 擷取失敗"""

    retryable = False

    def __init__(self, message: str, url: Optional[str] = None, user_message: Optional[str] = None):
        self.url = url
        super().__init__(
            message=message,
            user_message=user_message or "無法取得影片資訊，請稍後再試"
        )


class VideoUnavailableError(ExtractionError):
    """
    影片無法播放

    reason 可為：
    - unavailable: 已刪除或不存在
    - private: 私人影片
    - region_blocked: 地區限制
    - no_audio: 沒有音訊串流
    - unknown: 未知原因
    """

    REASON_MESSAGES = {
        "unavailable": "此影片不存在或已被刪除",
        "private": "此影片為私人或需要登入",
        "region_blocked": "此影片在目前地區無法觀看",
        "no_audio": "此影片沒有可用的音訊串流",
        "unknown": "影片無法播放",
    }

    def __init__(self, message: str, reason: str = "unknown", url: Optional[str] = None):
        self.reason = reason
        super().__init__(
            message=message,
            url=url,
            user_message=self.REASON_MESSAGES.get(reason, self.REASON_MESSAGES["unknown"])
        )


class ExtractionNetworkError(ExtractionError):
    """網路或憑證問題（可重試）"""

    retryable = True

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message=message, url=url, user_message="網路連線異常，請稍後再試")


class ExtractionTimeoutError(ExtractionError):
    """擷取超時（可重試）"""

    retryable = True

    def __init__(self, operation: str, timeout: float, url: Optional[str] = None):
        self.operation = operation
        self.timeout = timeout
        super().__init__(
            message=f"{operation} timed out after {timeout}s",
            url=url,
            user_message="取得影片資訊超時，請稍後再試"
        )


class ToolMissingError(MusicError):
    """外部工具（yt-dlp / ffmpeg）未安裝"""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(
            message=f"{tool} is not installed or not found in PATH",
            user_message=f"伺服器未安裝 {tool}"
        )


# ==================== 播放管線錯誤 ====================

class PipelineError(MusicError):
    """播放管線錯誤"""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message=message, user_message=user_message or "播放時發生錯誤")


class ConnectionTimeoutError(PipelineError):
    """語音連線未在時限內就緒"""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(
            message=f"Voice connection not ready after {timeout}s",
            user_message="語音連線逾時，請稍後再試"
        )


class ProcessInactiveError(PipelineError):
    """轉碼程序長時間沒有輸出"""

    def __init__(self, idle_seconds: float):
        self.idle_seconds = idle_seconds
        super().__init__(
            message=f"FFmpeg process inactive for {idle_seconds:.1f}s",
            user_message="音訊串流停止回應"
        )


class ProcessExitError(PipelineError):
    """轉碼程序以非零代碼結束"""

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr}" if stderr else ""
        super().__init__(message=f"FFmpeg exited with code {returncode}{detail}")


class ResourceCreationError(PipelineError):
    """無法建立音訊資源"""

    def __init__(self, message: str):
        super().__init__(
            message=f"Failed to create audio resource: {message}",
            user_message="無法建立音訊資源"
        )


class TranscoderMissingError(PipelineError):
    """找不到 ffmpeg"""

    def __init__(self, path: str = "ffmpeg"):
        self.path = path
        super().__init__(
            message=f"FFmpeg not installed (spawn {path} ENOENT)",
            user_message="伺服器未安裝 FFmpeg"
        )


class PipelineSupersededError(PipelineError):
    """較新的播放請求取代了這次啟動"""

    def __init__(self, generation: int):
        self.generation = generation
        super().__init__(message=f"Pipeline start superseded (generation {generation})")


# ==================== 語音錯誤 ====================

class VoiceConnectionError(MusicError):
    """語音連接錯誤"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_message="無法連接到語音頻道"
        )


# ==================== 錯誤建議 ====================

# 依序比對，先命中者優先
SUGGESTION_RULES: list[tuple[tuple[str, ...], str]] = [
    (("not installed", "enoent"), "請確認伺服器已安裝 FFmpeg 與 yt-dlp，並已加入 PATH"),
    (("audio resource",), "音訊資源建立失敗，請確認 FFmpeg 版本或稍後再試"),
    (("certificate", "ssl"), "SSL 憑證驗證失敗，請檢查系統時間與憑證設定"),
    (("404", "not found", "unavailable"), "影片可能已被刪除或設為私人，請換一個連結"),
    (("timeout", "timed out"), "網路連線逾時，請稍後再試"),
    (("voice", "connection"), "請確認機器人有加入並在語音頻道說話的權限"),
]

DEFAULT_SUGGESTION = "請稍後再試，若問題持續請聯絡管理員"


def suggest_fix(message: str) -> str:
    """
    依錯誤訊息關鍵字給出建議

    Args:
        message: 錯誤訊息

    Returns:
        可操作的建議文字
    """
    lowered = (message or "").lower()
    for keywords, suggestion in SUGGESTION_RULES:
        if any(keyword in lowered for keyword in keywords):
            return suggestion
    return DEFAULT_SUGGESTION
