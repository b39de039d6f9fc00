"""
指令結果

PlayerRegistry 的每個操作都回傳 CommandResult，不會拋出例外；
呼叫端依 outcome 分支處理。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..utils.errors import MusicError, suggest_fix
from .queue import Track
from .state import PlayerState


class Outcome(str, Enum):
    OK = "ok"
    VOICE_CHANNEL_REQUIRED = "voice_channel_required"
    EXTRACTOR_UNAVAILABLE = "extractor_unavailable"
    EXTRACTION_FAILED = "extraction_failed"
    VOICE_JOIN_FAILED = "voice_join_failed"
    PIPELINE_FAILED = "pipeline_failed"
    NOTHING_PLAYING = "nothing_playing"
    NOT_PAUSED = "not_paused"
    NO_NEXT_TRACK = "no_next_track"
    NO_PREVIOUS_TRACK = "no_previous_track"
    QUEUE_EMPTY = "queue_empty"
    INVALID_INDEX = "invalid_index"
    NOT_ENOUGH_TRACKS = "not_enough_tracks"
    INVALID_LOOP_MODE = "invalid_loop_mode"


# 沒有例外可分類時，給使用者看的預設訊息
OUTCOME_MESSAGES = {
    Outcome.VOICE_CHANNEL_REQUIRED: "請先加入語音頻道",
    Outcome.EXTRACTOR_UNAVAILABLE: "影片解析器目前無法使用",
    Outcome.EXTRACTION_FAILED: "無法取得影片資訊",
    Outcome.VOICE_JOIN_FAILED: "無法連接到語音頻道",
    Outcome.PIPELINE_FAILED: "播放時發生錯誤",
    Outcome.NOTHING_PLAYING: "目前沒有正在播放的曲目",
    Outcome.NOT_PAUSED: "目前沒有暫停中的曲目",
    Outcome.NO_NEXT_TRACK: "沒有下一首了",
    Outcome.NO_PREVIOUS_TRACK: "沒有上一首了",
    Outcome.QUEUE_EMPTY: "播放清單是空的",
    Outcome.INVALID_INDEX: "無效的曲目編號",
    Outcome.NOT_ENOUGH_TRACKS: "至少需要兩首曲目才能隨機排序",
    Outcome.INVALID_LOOP_MODE: "無效的循環模式",
}

OUTCOME_SUGGESTIONS = {
    Outcome.VOICE_CHANNEL_REQUIRED: "加入語音頻道後再試一次",
    Outcome.EXTRACTOR_UNAVAILABLE: "請確認伺服器已安裝 yt-dlp",
    Outcome.NOTHING_PLAYING: "使用播放指令加入曲目",
    Outcome.QUEUE_EMPTY: "使用播放指令加入曲目",
    Outcome.INVALID_INDEX: "請用播放清單指令查看曲目編號",
    Outcome.INVALID_LOOP_MODE: "可用的模式：none / track / queue",
}


@dataclass(frozen=True)
class CommandResult:
    outcome: Outcome
    error: Optional[str] = None
    suggestion: Optional[str] = None
    track: Optional[Track] = None
    state: Optional[PlayerState] = None
    started: bool = False

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.OK

    @classmethod
    def ok(cls, *, track: Optional[Track] = None, state: Optional[PlayerState] = None,
           started: bool = False) -> "CommandResult":
        return cls(Outcome.OK, track=track, state=state, started=started)

    @classmethod
    def fail(cls, outcome: Outcome, error: Optional[BaseException] = None,
             state: Optional[PlayerState] = None) -> "CommandResult":
        """依例外內容分類建議；沒有例外時使用該結果的預設訊息"""
        if isinstance(error, MusicError):
            message = error.user_message
            suggestion = suggest_fix(error.message)
        elif error is not None:
            message = str(error) or OUTCOME_MESSAGES.get(outcome)
            suggestion = suggest_fix(str(error))
        else:
            message = OUTCOME_MESSAGES.get(outcome)
            suggestion = OUTCOME_SUGGESTIONS.get(outcome)
        return cls(outcome, error=message, suggestion=suggestion, state=state)

    def to_dict(self) -> dict:
        data = {"success": self.success}
        if self.error:
            data["error"] = self.error
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data
