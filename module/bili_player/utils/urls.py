"""
B站連結工具
"""

import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

_VIDEO_URL = re.compile(
    r"^https?://(?:www\.|m\.)?bilibili\.com/video/(?P<id>BV[0-9A-Za-z]{10}|av\d+)",
    re.IGNORECASE,
)
_SHORT_URL = re.compile(r"^https?://(?:www\.)?b23\.tv/[0-9A-Za-z]+", re.IGNORECASE)
_BVID = re.compile(r"^BV[0-9A-Za-z]{10}$")


def extract_video_id(url: str) -> Optional[str]:
    """取出 BV 號或 av 號；短網址無法直接取得，回傳 None"""
    match = _VIDEO_URL.match((url or "").strip())
    if not match:
        return None
    video_id = match.group("id")
    if video_id[:2].lower() == "av":
        return "av" + video_id[2:]
    return "BV" + video_id[2:]


def is_bilibili_url(url: str) -> bool:
    url = (url or "").strip()
    return bool(_VIDEO_URL.match(url) or _SHORT_URL.match(url))


def is_bvid(text: str) -> bool:
    return bool(_BVID.match(text or ""))


def normalize_url(url: str) -> Optional[str]:
    """
    統一成 https://www.bilibili.com/video/<ID>[?p=N]

    短網址原樣返回（交給 yt-dlp 追蹤轉址）；無效連結回傳 None
    """
    url = (url or "").strip()
    if _SHORT_URL.match(url):
        return url

    video_id = extract_video_id(url)
    if video_id is None:
        return None

    normalized = f"https://www.bilibili.com/video/{video_id}"
    part = parse_qs(urlparse(url).query).get("p", ["1"])[0]
    if part.isdigit() and int(part) > 1:
        normalized += f"?p={int(part)}"
    return normalized


def video_url(bvid: str) -> str:
    return f"https://www.bilibili.com/video/{bvid}"
