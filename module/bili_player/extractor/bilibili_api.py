"""
B站搜尋 API

使用 aiohttp 呼叫 https://api.bilibili.com/x/web-interface/search/type：
- search(): 單頁搜尋，API 失敗（例如 412 風控）時改用 yt-dlp 搜尋
- pick_candidates(): 自動歌單，抓多頁候選 → 去重 → 品質過濾 → 排除最近播放 → 隨機取樣
"""

import asyncio
import random
import re
from typing import List, Optional

import aiohttp
from loguru import logger

from ..constants import (
    AUTOPLAY_COUNT,
    BILIBILI_REFERER,
    SEARCH_API_URL,
    SEARCH_CANDIDATE_TIMEOUT,
    SEARCH_PAGE_SIZE,
    SEARCH_RANDOM_PAGE_MAX,
    SEARCH_TIMEOUT,
    USER_AGENT,
)
from ..core.history import HistoryStore
from ..utils.errors import MusicError
from ..utils.urls import video_url

HEADERS = {
    "User-Agent": USER_AGENT,
    "Referer": BILIBILI_REFERER,
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-site",
    "Cookie": "buvid3=infoc;",
}

_HTML_TAG = re.compile(r"<[^>]*>")


def parse_duration(duration) -> int:
    """「MM:SS」或「HH:MM:SS」轉成秒數"""
    if isinstance(duration, (int, float)):
        return int(duration)
    if not duration or not isinstance(duration, str):
        return 0
    try:
        parts = [int(p) for p in duration.split(":")]
    except ValueError:
        return 0
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + part
    return seconds


def parse_video(video: dict) -> dict:
    """整理 API 回傳的單筆影片，欄位與擷取器一致"""
    bvid = video.get("bvid") or ""
    thumbnail = video.get("pic") or ""
    if thumbnail.startswith("//"):
        thumbnail = "https:" + thumbnail
    return {
        "source_id": bvid,
        "aid": video.get("aid"),
        "title": _HTML_TAG.sub("", video.get("title") or ""),
        "uploader": video.get("author") or "未知",
        "duration": parse_duration(video.get("duration")),
        "thumbnail": thumbnail,
        "view_count": int(video.get("play") or 0),
        "like_count": video.get("like") if isinstance(video.get("like"), int) else 0,
        "url": video_url(bvid) if bvid else video.get("arcurl", ""),
    }


def is_quality(video: dict) -> bool:
    """按讚率超過 5% 或觀看數超過一萬"""
    views = int(video.get("view_count") or 0)
    likes = int(video.get("like_count") or 0)
    like_rate = likes / views if views > 0 else 0
    return like_rate > 0.05 or views > 10000


class BilibiliSearchClient:
    """
    使用方式：
        client = BilibiliSearchClient(extractor=extractor)
        videos = await client.search("初音未來")
        picks = await client.pick_candidates("哈基米", guild_id=guild.id, count=10)
    """

    def __init__(self, extractor=None, history: Optional[HistoryStore] = None):
        self.extractor = extractor
        self.history = history or HistoryStore()

    async def _fetch_page(self, keyword: str, page: int, page_size: int, timeout: float) -> List[dict]:
        """
        抓取單頁搜尋結果

        Raises:
            aiohttp.ClientError / asyncio.TimeoutError: 連線失敗
            ValueError: API 回傳錯誤代碼
        """
        params = {
            "search_type": "video",
            "keyword": keyword,
            "page": page,
            "pagesize": page_size,
            "order": "totalrank",
            "duration": 0,
            "tids": 0,
        }
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(headers=HEADERS, timeout=client_timeout) as session:
            async with session.get(SEARCH_API_URL, params=params) as resp:
                resp.raise_for_status()
                payload = await resp.json(content_type=None)

        if payload.get("code") != 0:
            raise ValueError(f"Bilibili API error {payload.get('code')}: {payload.get('message')}")
        results = (payload.get("data") or {}).get("result") or []
        return [parse_video(v) for v in results if isinstance(v, dict) and v.get("type", "video") == "video"]

    async def search(self, keyword: str, page: int = 1, page_size: int = 20) -> List[dict]:
        """搜尋影片，API 失敗時改用 yt-dlp"""
        try:
            videos = await self._fetch_page(keyword, page, page_size, SEARCH_TIMEOUT)
            logger.debug(f"[BilibiliSearch] 「{keyword}」第 {page} 頁: {len(videos)} 筆")
            return videos
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"[BilibiliSearch] API 搜尋失敗，改用 yt-dlp: {e!r}")
            return await self._fallback_search(keyword, page_size)

    async def _fallback_search(self, keyword: str, max_results: int) -> List[dict]:
        if self.extractor is None:
            return []
        try:
            return await self.extractor.search(keyword, max_results=max_results)
        except MusicError as e:
            logger.error(f"[BilibiliSearch] yt-dlp 搜尋也失敗: {e}")
            return []

    async def fetch_raw_candidates(
        self,
        keyword: str,
        page_size: int = SEARCH_PAGE_SIZE,
        timeout: float = SEARCH_CANDIDATE_TIMEOUT,
    ) -> List[dict]:
        """第 1 頁加上 2~10 頁中隨機 1~2 頁"""
        extra = {random.randint(2, SEARCH_RANDOM_PAGE_MAX) for _ in range(random.randint(1, 2))}
        pages = [1, *sorted(extra)]

        responses = await asyncio.gather(
            *(self._fetch_page(keyword, p, page_size, timeout) for p in pages),
            return_exceptions=True,
        )

        candidates: List[dict] = []
        for page, response in zip(pages, responses):
            if isinstance(response, BaseException):
                logger.warning(f"[BilibiliSearch] 第 {page} 頁抓取失敗: {response!r}")
                continue
            candidates.extend(response)

        if not candidates:
            return await self._fallback_search(keyword, page_size)
        return candidates

    def process_candidates(self, raw: List[dict], guild_id: Optional[int], count: int) -> List[dict]:
        """去重 → 品質過濾 → 排除最近播放（全被排除則不排除）→ 洗牌取樣"""
        seen = set()
        deduped = []
        for video in raw:
            key = HistoryStore.key_of(video)
            if not key or key in seen:
                continue
            seen.add(key)
            deduped.append(video)

        qualified = [v for v in deduped if is_quality(v)]
        pool = self.history.filter(guild_id, qualified) if guild_id is not None else qualified
        soft_fallback = not pool and bool(qualified)
        if soft_fallback:
            pool = list(qualified)

        random.shuffle(pool)
        selected = pool[:count]

        logger.info(
            f"[BilibiliSearch] 候選 {len(raw)} → 去重 {len(deduped)} → 合格 {len(qualified)}"
            f" → 選出 {len(selected)}{'（已忽略播放紀錄）' if soft_fallback else ''}"
        )
        return selected

    async def pick_candidates(self, keyword: str, guild_id: Optional[int] = None, count: int = AUTOPLAY_COUNT) -> List[dict]:
        """自動歌單：選出 count 首並記錄到播放紀錄"""
        raw = await self.fetch_raw_candidates(keyword)
        if not raw:
            logger.warning(f"[BilibiliSearch] 「{keyword}」沒有任何候選")
            return []

        selected = self.process_candidates(raw, guild_id, count)
        if guild_id is not None:
            self.history.record(guild_id, [HistoryStore.key_of(v) for v in selected])
        return selected
