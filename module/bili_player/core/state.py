"""
播放狀態

- LoopMode / PlayerStatus: 循環模式與播放器狀態列舉
- PlaybackClock: 以時間戳計算播放位置，暫停的時間不計入
- PlayerState: 對外發布的狀態快照
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..constants import PROGRESS_BAR_EMPTY, PROGRESS_BAR_FILLED, PROGRESS_BAR_LENGTH

if TYPE_CHECKING:
    from .queue import Track


class LoopMode(str, Enum):
    NONE = "none"
    TRACK = "track"
    QUEUE = "queue"

    def next(self) -> "LoopMode":
        """按鈕循環切換順序：none → queue → track → none"""
        order = [LoopMode.NONE, LoopMode.QUEUE, LoopMode.TRACK]
        return order[(order.index(self) + 1) % len(order)]


DEFAULT_LOOP_MODE = LoopMode.QUEUE


class PlayerStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class PlaybackClock:
    """
    精確追蹤播放時間

    使用方式：
        clock = PlaybackClock()
        clock.start(duration=180)

        clock.elapsed            # 實際播放秒數（float，不含暫停）
        clock.current_position   # 給 UI 用的整數秒

        clock.pause()
        clock.resume()
        clock.stop()
    """

    running: bool = False
    paused: bool = False

    _start_time: float = field(default=0, repr=False)
    _pause_start: float = field(default=0, repr=False)
    _total_paused: float = field(default=0, repr=False)
    _duration: int = field(default=0, repr=False)

    def start(self, duration: int) -> None:
        self.running = True
        self.paused = False
        self._start_time = time.time()
        self._pause_start = 0
        self._total_paused = 0
        self._duration = duration

    def pause(self) -> bool:
        if self.running and not self.paused:
            self.paused = True
            self._pause_start = time.time()
            return True
        return False

    def resume(self) -> bool:
        if self.paused:
            self.paused = False
            self._total_paused += time.time() - self._pause_start
            return True
        return False

    def stop(self) -> None:
        self.running = False
        self.paused = False
        self._start_time = 0
        self._pause_start = 0
        self._total_paused = 0

    @property
    def start_time(self) -> Optional[float]:
        """目前曲目開始播放的時間戳"""
        return self._start_time if self.running else None

    @property
    def duration(self) -> int:
        return self._duration

    @property
    def elapsed(self) -> float:
        """實際播放的秒數"""
        if not self.running:
            return 0.0
        end = self._pause_start if self.paused else time.time()
        return max(0.0, end - self._start_time - self._total_paused)

    @property
    def current_position(self) -> int:
        """目前播放位置（秒），範圍 [0, duration]"""
        position = int(self.elapsed)
        if self._duration > 0:
            position = min(position, self._duration)
        return position


def format_time(seconds: Optional[int]) -> str:
    """格式化時間為 M:SS 或 H:MM:SS"""
    seconds = int(seconds or 0)
    if seconds >= 3600:
        return f"{seconds // 3600}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"
    return f"{seconds // 60}:{seconds % 60:02d}"


def progress_bar(position: int, duration: int, length: int = PROGRESS_BAR_LENGTH) -> str:
    """例如：「▓▓▓▓▓▓░░░░░░░░░」"""
    if duration <= 0:
        return PROGRESS_BAR_EMPTY * length
    filled = min(length, int(position / duration * length))
    return PROGRESS_BAR_FILLED * filled + PROGRESS_BAR_EMPTY * (length - filled)


@dataclass(frozen=True)
class PlayerState:
    """播放器對外狀態快照（渲染端唯一使用的形狀）"""

    guild_id: int
    is_playing: bool
    is_paused: bool
    current_track: Optional["Track"]
    current_index: int
    queue_length: int
    has_next: bool
    has_previous: bool
    loop_mode: LoopMode
    status: PlayerStatus = PlayerStatus.IDLE
    position: int = 0

    def to_dict(self) -> dict:
        return {
            "isPlaying": self.is_playing,
            "isPaused": self.is_paused,
            "currentTrack": self.current_track.to_dict() if self.current_track else None,
            "currentIndex": self.current_index,
            "queueLength": self.queue_length,
            "hasNext": self.has_next,
            "hasPrevious": self.has_previous,
            "loopMode": self.loop_mode.value,
        }
