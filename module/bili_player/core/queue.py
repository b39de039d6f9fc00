"""
播放佇列管理

特性：
- 有序清單 + 目前位置游標（-1 表示沒有正在播放的曲目）
- 依循環模式計算上一首 / 下一首
- 隨機排序時固定目前曲目於第一位
- 佇列播完後記住位置，補歌時從新加入的曲目接續
"""

import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional
from loguru import logger

from .state import LoopMode


@dataclass
class Track:
    """
    曲目資料結構

    除了 retry_count 與延遲解析的 audio_url 之外，入列後視為不可變
    """
    title: str
    duration: int                        # 時長（秒）
    audio_url: str = ""                  # 串流 URL，空字串表示播放前才解析
    url: str = ""                        # 影片頁面連結
    uploader: str = ""
    thumbnail: str = ""
    source_id: str = ""                  # BV 號
    requested_by: Optional[int] = None   # 點歌者的 Discord 用戶 ID
    added_at: float = 0.0
    id: str = ""
    retry_count: int = field(default=0, repr=False)
    metadata: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_info(cls, info: dict, requested_by: Optional[int] = None) -> "Track":
        """從擷取結果建立曲目"""
        known = {"title", "duration", "audio_url", "url", "uploader", "thumbnail", "source_id"}
        return cls(
            title=info.get("title") or "未知標題",
            duration=int(info.get("duration") or 0),
            audio_url=info.get("audio_url") or "",
            url=info.get("url") or "",
            uploader=info.get("uploader") or "未知",
            thumbnail=info.get("thumbnail") or "",
            source_id=info.get("source_id") or "",
            requested_by=requested_by,
            metadata={k: v for k, v in info.items() if k not in known},
        )

    def format_duration(self) -> str:
        """格式化時長"""
        duration = int(self.duration) if self.duration is not None else 0

        if duration >= 3600:
            hours = duration // 3600
            minutes = (duration % 3600) // 60
            seconds = duration % 60
            return f"{hours}:{minutes:02d}:{seconds:02d}"
        minutes = duration // 60
        seconds = duration % 60
        return f"{minutes}:{seconds:02d}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "duration": self.duration,
            "url": self.url,
            "uploader": self.uploader,
            "thumbnail": self.thumbnail,
            "sourceId": self.source_id,
            "requestedBy": self.requested_by,
            "addedAt": self.added_at,
        }


class TrackQueue:
    """
    播放佇列

    佇列本身不知道「正在播放」的意義，只維護游標；
    移除目前曲目後要播什麼由播放器決定。

    使用方式：
        queue = TrackQueue()
        track = queue.enqueue(info, requested_by=user_id)

        index = queue.next_index(LoopMode.QUEUE)
        queue.set_index(index)
    """

    def __init__(self):
        self._tracks: List[Track] = []
        self._current_index: int = -1
        # 播完時的佇列長度，用於補歌後接續播放
        self._exhausted_at: Optional[int] = None

    # === 屬性 ===

    @property
    def is_empty(self) -> bool:
        return len(self._tracks) == 0

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_track(self) -> Optional[Track]:
        """目前曲目（游標為 -1 時為 None）"""
        if 0 <= self._current_index < len(self._tracks):
            return self._tracks[self._current_index]
        return None

    @property
    def tracks(self) -> List[Track]:
        """取得所有曲目（只讀副本）"""
        return self._tracks.copy()

    # === 修改操作 ===

    def enqueue(self, track_data: Any, requested_by: Optional[int] = None) -> Track:
        """
        新增曲目到佇列尾端，並蓋上加入時間與 ID

        Args:
            track_data: 擷取結果 dict 或 Track
            requested_by: 點歌者 ID

        Returns:
            入列的 Track
        """
        if isinstance(track_data, Track):
            track = track_data
            if requested_by is not None:
                track.requested_by = requested_by
        else:
            track = Track.from_info(track_data, requested_by)

        track.added_at = time.time()
        track.id = uuid.uuid4().hex
        self._tracks.append(track)

        logger.debug(f"[TrackQueue] 已新增曲目: {track.title}，目前共 {len(self._tracks)} 首")
        return track

    def remove_at(self, index: int) -> bool:
        """
        移除指定位置（0-based）的曲目

        移除目前曲目時，游標停在同一位置（超出範圍則退到最後一首）

        Returns:
            是否成功移除（索引無效時回傳 False）
        """
        if index < 0 or index >= len(self._tracks):
            return False

        removed = self._tracks.pop(index)

        if not self._tracks:
            self._current_index = -1
        elif index < self._current_index:
            self._current_index -= 1
        elif index == self._current_index and self._current_index >= len(self._tracks):
            self._current_index = len(self._tracks) - 1

        if self._exhausted_at is not None and index < self._exhausted_at:
            self._exhausted_at -= 1

        logger.debug(f"[TrackQueue] 已移除曲目: {removed.title}")
        return True

    def clear(self, keep_current: bool = True) -> int:
        """
        清空佇列

        Args:
            keep_current: 是否保留目前曲目成為單曲佇列

        Returns:
            被移除的曲目數量
        """
        current = self.current_track
        count = len(self._tracks)

        if keep_current and current is not None:
            self._tracks = [current]
            self._current_index = 0
            count -= 1
        else:
            self._tracks = []
            self._current_index = -1

        self._exhausted_at = None
        logger.debug(f"[TrackQueue] 已清空佇列，共移除 {count} 首")
        return count

    def shuffle(self) -> None:
        """隨機排序，目前曲目固定在第一位"""
        current = self.current_track
        others = [t for i, t in enumerate(self._tracks) if i != self._current_index]
        random.shuffle(others)

        if current is not None:
            self._tracks = [current] + others
            self._current_index = 0
        else:
            self._tracks = others

        logger.debug(f"[TrackQueue] 已隨機排序 {len(self._tracks)} 首")

    # === 游標 ===

    def set_index(self, index: int) -> Optional[Track]:
        """移動游標到指定位置"""
        if index < 0 or index >= len(self._tracks):
            logger.warning(f"[TrackQueue] 無效的索引 {index}（共 {len(self._tracks)} 首）")
            return None
        self._current_index = index
        self._exhausted_at = None
        return self._tracks[index]

    def mark_exhausted(self) -> None:
        """佇列播完：游標歸 -1，記住當下長度"""
        self._exhausted_at = len(self._tracks)
        self._current_index = -1

    def resume_index(self) -> int:
        """
        沒有目前曲目時應從哪裡開始播

        播完後有補歌則從第一首新歌開始，否則從頭
        """
        if self._exhausted_at is not None and self._exhausted_at < len(self._tracks):
            return self._exhausted_at
        return 0

    def next_index(self, loop_mode: LoopMode) -> Optional[int]:
        """
        下一首的位置

        Returns:
            索引；沒有下一首時為 None
        """
        count = len(self._tracks)
        if count == 0:
            return None
        if self._current_index < count - 1:
            return self._current_index + 1
        if loop_mode == LoopMode.QUEUE:
            return 0
        if loop_mode == LoopMode.TRACK and self._current_index >= 0:
            return self._current_index
        return None

    def previous_index(self, loop_mode: LoopMode) -> Optional[int]:
        """
        上一首的位置

        Returns:
            索引；沒有上一首時為 None
        """
        count = len(self._tracks)
        if count == 0:
            return None
        if self._current_index > 0:
            return self._current_index - 1
        if loop_mode == LoopMode.QUEUE:
            return count - 1
        if loop_mode == LoopMode.TRACK and self._current_index >= 0:
            return self._current_index
        return None

    def has_next(self, loop_mode: LoopMode) -> bool:
        return self.next_index(loop_mode) is not None

    def has_previous(self, loop_mode: LoopMode) -> bool:
        return self.previous_index(loop_mode) is not None

    # === 查詢 ===

    def get(self, index: int) -> Optional[Track]:
        if 0 <= index < len(self._tracks):
            return self._tracks[index]
        return None

    def get_upcoming(self, count: int = 3) -> List[Track]:
        """取得接下來的曲目（不含目前曲目）"""
        if not self._tracks or self._current_index < 0:
            return []
        start = self._current_index + 1
        return self._tracks[start:start + count]

    def get_page(self, page: int = 1, per_page: int = 10) -> dict:
        """
        取得分頁資料

        Returns:
            dict 包含 tracks / start_index（1-based）/ current_page /
            total_pages / total_tracks / current_index（1-based，0 表示無）
        """
        total = len(self._tracks)
        total_pages = max(1, (total + per_page - 1) // per_page)
        page = max(1, min(page, total_pages))

        start = (page - 1) * per_page
        return {
            "tracks": self._tracks[start:start + per_page],
            "start_index": start + 1,
            "current_page": page,
            "total_pages": total_pages,
            "total_tracks": total,
            "current_index": self._current_index + 1 if self._current_index >= 0 else 0,
        }

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self) -> Iterator[Track]:
        return iter(self._tracks)
