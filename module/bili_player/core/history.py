"""
每個伺服器最近播放過的影片，自動歌單用來避免重複推薦
"""

from collections import deque
from typing import Dict, Iterable, List

from ..constants import HISTORY_MAX_SIZE


class HistoryStore:
    """
    使用方式：
        history = HistoryStore()
        history.record(guild_id, ["BV1xx411c7mD"])
        fresh = history.filter(guild_id, candidates)
    """

    def __init__(self, max_size: int = HISTORY_MAX_SIZE):
        self.max_size = max_size
        self._entries: Dict[int, deque] = {}

    @staticmethod
    def key_of(video: dict) -> str:
        return str(video.get("source_id") or video.get("id") or video.get("url") or "")

    def record(self, guild_id: int, video_ids: Iterable[str]) -> None:
        entries = self._entries.setdefault(guild_id, deque(maxlen=self.max_size))
        for video_id in video_ids:
            if video_id and video_id not in entries:
                entries.append(video_id)

    def filter(self, guild_id: int, videos: List[dict]) -> List[dict]:
        """去掉最近播放過的影片"""
        seen = self._entries.get(guild_id)
        if not seen:
            return list(videos)
        return [v for v in videos if self.key_of(v) not in seen]

    def contains(self, guild_id: int, video_id: str) -> bool:
        return video_id in self._entries.get(guild_id, ())

    def clear(self, guild_id: int) -> None:
        self._entries.pop(guild_id, None)
