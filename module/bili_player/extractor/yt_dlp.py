"""
yt-dlp B站擷取器

使用 asyncio.create_subprocess_exec 呼叫 yt-dlp：
- 取得影片資訊（--dump-json，結果快取 30 分鐘）
- 取得音訊串流 URL（--get-url --format bestaudio/best）
- 關鍵字搜尋（bilisearchN:關鍵字）

每次呼叫有逾時（SIGTERM，2 秒後 SIGKILL），網路類錯誤以線性退避重試。
"""

import asyncio
import json
from typing import List, Optional
from loguru import logger

from ..constants import (
    EXTRACT_MAX_RETRIES,
    EXTRACT_RETRY_BASE_DELAY,
    INFO_CACHE_MAX_SIZE,
    INFO_CACHE_TTL,
    SEARCH_CANDIDATE_TIMEOUT,
    USER_AGENT,
    YTDLP_EXTRACT_TIMEOUT,
    YTDLP_KILL_GRACE,
    YTDLP_PATH,
    YTDLP_VERSION_TIMEOUT,
)
from ..core.cache import TTLCache
from ..utils.errors import (
    ExtractionError,
    ExtractionNetworkError,
    ExtractionTimeoutError,
    InvalidUrlError,
    MusicError,
    ToolMissingError,
    VideoUnavailableError,
)
from ..utils.urls import extract_video_id, is_bilibili_url, is_bvid, normalize_url, video_url

# 被 SIGKILL / SIGTERM 結束的代碼
KILLED_EXIT_CODES = {137, 143, -9, -15}


class BilibiliExtractor:
    """
    B站擷取器

    使用方式：
        extractor = BilibiliExtractor()
        info = await extractor.extract("https://www.bilibili.com/video/BV1xx411c7mD")
        info["audio_url"]   # 給 FFmpeg 的串流 URL

        results = await extractor.search("哈基米", max_results=10)
    """

    # 錯誤模式對應表（依序比對）
    ERROR_PATTERNS = {
        "no_audio": [
            "no audio stream",
            "requested format is not available",
        ],
        "private": [
            "private",
            "login required",
            "需要登录",
        ],
        "region_blocked": [
            "not available in your",
            "geo restriction",
            "地区",
        ],
        "unavailable": [
            "video unavailable",
            "this video is unavailable",
            "http error 404",
            "啥都木有",
            "视频不见了",
        ],
    }

    # 可重試的網路類錯誤
    RETRYABLE_PATTERNS = [
        "timeout", "timed out", "network", "connection", "econnreset",
        "enotfound", "econnrefused", "etimedout", "socket hang up",
        "certificate", "ssl", "tls", "temporary failure",
        "service unavailable", "502", "503", "504",
    ]

    def __init__(
        self,
        executable: str = YTDLP_PATH,
        *,
        timeout: float = YTDLP_EXTRACT_TIMEOUT,
        max_retries: int = EXTRACT_MAX_RETRIES,
        retry_delay: float = EXTRACT_RETRY_BASE_DELAY,
        cache: Optional[TTLCache] = None,
    ):
        self.executable = executable
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.cache = cache or TTLCache(ttl=INFO_CACHE_TTL, max_size=INFO_CACHE_MAX_SIZE)
        self._available = False

    # === 公開方法 ===

    async def is_available(self) -> bool:
        """第一次使用時才檢查 yt-dlp 是否可執行"""
        if self._available:
            return True

        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"[yt-dlp] 無法執行 {self.executable}: {e}")
            return False

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), YTDLP_VERSION_TIMEOUT)
        except asyncio.TimeoutError:
            await self._kill(proc)
            logger.error("[yt-dlp] 版本檢查逾時")
            return False

        self._available = proc.returncode == 0
        if self._available:
            logger.info(f"[yt-dlp] 版本: {stdout.decode(errors='replace').strip()}")
        return self._available

    async def extract(self, url: str) -> dict:
        """
        取得影片資訊與音訊串流 URL

        Returns:
            dict 包含 title / duration / audio_url / uploader / thumbnail / source_id / url 等

        Raises:
            InvalidUrlError: 不是 B站連結
            ToolMissingError: 沒有安裝 yt-dlp
            ExtractionError: 擷取失敗（網路類錯誤已重試）
        """
        if not is_bilibili_url(url):
            raise InvalidUrlError(url)
        normalized = normalize_url(url)
        if normalized is None:
            raise InvalidUrlError(url)
        if not await self.is_available():
            raise ToolMissingError("yt-dlp")

        attempt = 0
        while True:
            try:
                info = dict(await self.get_video_info(normalized))
                info["audio_url"] = await self.get_audio_url(normalized)
                info["original_url"] = url
                logger.info(f"[yt-dlp] 擷取完成: {info['title']} ({info['duration']}s)")
                return info
            except ExtractionError as e:
                if not e.retryable or attempt >= self.max_retries:
                    logger.error(f"[yt-dlp] 擷取失敗（第 {attempt + 1} 次）: {e}")
                    raise
                delay = (attempt + 1) * self.retry_delay
                logger.warning(f"[yt-dlp] 擷取失敗（第 {attempt + 1} 次）: {e}，{delay}s 後重試")
                await asyncio.sleep(delay)
                attempt += 1

    async def get_video_info(self, url: str) -> dict:
        """取得影片資訊（以正規化 URL 快取）"""
        key = normalize_url(url) or url
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"[yt-dlp] 使用快取資訊: {key}")
            return cached

        stdout = await self._run(
            ["--dump-json", "--no-download", "--no-check-certificate", "--user-agent", USER_AGENT, key],
            operation="video info extraction",
            url=key,
        )
        try:
            data = json.loads(stdout.splitlines()[0] if stdout else "")
        except (json.JSONDecodeError, IndexError) as e:
            raise ExtractionError(f"Failed to parse video metadata: {e}", url=key) from e

        info = self._parse_video_data(data)
        self.cache.set(key, info)
        return info

    async def get_audio_url(self, url: str) -> str:
        """取得最佳音訊串流 URL"""
        stdout = await self._run(
            ["--get-url", "--format", "bestaudio/best", "--no-check-certificate", "--user-agent", USER_AGENT, url],
            operation="audio stream URL extraction",
            url=url,
        )
        lines = [line.strip() for line in stdout.splitlines() if line.strip()]
        if not lines:
            raise VideoUnavailableError("No audio stream URL found", reason="no_audio", url=url)
        return lines[0]

    async def search(self, keyword: str, max_results: int = 10) -> List[dict]:
        """
        以 yt-dlp 的 bilisearch 搜尋

        Returns:
            曲目資訊列表（不含 audio_url，播放前再解析）
        """
        if not await self.is_available():
            raise ToolMissingError("yt-dlp")

        stdout = await self._run(
            [f"bilisearch{max_results}:{keyword}", "--get-id", "--no-download", "--flat-playlist"],
            operation="search",
        )
        video_ids = [line.strip() for line in stdout.splitlines() if line.strip()]
        semaphore = asyncio.Semaphore(5)

        async def fetch(video_id: str) -> Optional[dict]:
            if is_bvid(video_id):
                target = video_url(video_id)
            elif video_id.isdigit():
                target = f"https://www.bilibili.com/video/av{video_id}"
            else:
                return None
            async with semaphore:
                try:
                    return await asyncio.wait_for(self.get_video_info(target), SEARCH_CANDIDATE_TIMEOUT)
                except (MusicError, asyncio.TimeoutError) as e:
                    logger.warning(f"[yt-dlp] 取得搜尋結果資訊失敗: {video_id} - {e!r}")
                    return None

        results = await asyncio.gather(*(fetch(video_id) for video_id in video_ids))
        found = [info for info in results if info]
        logger.info(f"[yt-dlp] 搜尋「{keyword}」: {len(found)} 筆")
        return found

    # === 內部方法 ===

    async def _run(self, args: List[str], operation: str, url: Optional[str] = None) -> str:
        """執行 yt-dlp 並回傳 stdout，失敗時拋出分類後的錯誤"""
        logger.debug(f"[yt-dlp] {operation}: {' '.join(args)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ToolMissingError("yt-dlp") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise ExtractionTimeoutError(operation, self.timeout, url) from None

        if proc.returncode in KILLED_EXIT_CODES:
            raise ExtractionTimeoutError(operation, self.timeout, url)
        if proc.returncode != 0:
            stderr_text = stderr.decode(errors="replace").strip()
            logger.debug(f"[yt-dlp] {operation} stderr: {stderr_text[:500]}")
            raise self._classify(stderr_text, proc.returncode, url)

        return stdout.decode(errors="replace").strip()

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        """SIGTERM，寬限期後 SIGKILL"""
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), YTDLP_KILL_GRACE)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    def _classify(self, stderr: str, returncode: Optional[int], url: Optional[str]) -> ExtractionError:
        """依 stderr 關鍵字分類錯誤"""
        lines = [line for line in stderr.splitlines() if line.strip()]
        detail = lines[-1] if lines else "no output"
        message = f"yt-dlp exited with code {returncode}: {detail}"
        lowered = stderr.lower()

        for reason, patterns in self.ERROR_PATTERNS.items():
            if any(pattern in lowered for pattern in patterns):
                return VideoUnavailableError(message, reason=reason, url=url)
        if any(pattern in lowered for pattern in self.RETRYABLE_PATTERNS):
            return ExtractionNetworkError(message, url=url)
        return ExtractionError(message, url=url)

    def _parse_video_data(self, data: dict) -> dict:
        """整理 yt-dlp 的 JSON 輸出"""
        url = data.get("webpage_url") or data.get("original_url") or ""
        upload_date = data.get("upload_date")
        if upload_date and len(upload_date) == 8:
            upload_date = f"{upload_date[:4]}-{upload_date[4:6]}-{upload_date[6:]}"

        return {
            "title": data.get("title") or "未知標題",
            "duration": int(data.get("duration") or 0),
            "uploader": data.get("uploader") or data.get("channel") or "未知",
            "uploader_url": data.get("uploader_url") or "",
            "thumbnail": self._pick_best_thumbnail(data),
            "source_id": extract_video_id(url) or data.get("id") or "",
            "url": url,
            "view_count": int(data.get("view_count") or 0),
            "like_count": int(data.get("like_count") or 0),
            "upload_date": upload_date,
        }

    @staticmethod
    def _pick_best_thumbnail(data: dict) -> str:
        """選解析度最高的縮圖"""
        thumbnails = [
            t for t in (data.get("thumbnails") or [])
            if t.get("url") and t.get("width") and t.get("height")
        ]
        if thumbnails:
            return max(thumbnails, key=lambda t: t["width"] * t["height"])["url"]
        return data.get("thumbnail") or ""
