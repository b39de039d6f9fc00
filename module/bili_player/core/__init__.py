# Core module
from .queue import Track, TrackQueue
from .state import LoopMode, PlayerStatus, PlayerState, PlaybackClock, DEFAULT_LOOP_MODE
from .cache import TTLCache
from .history import HistoryStore
from .events import StateBus, StateEvent
from .pipeline import PlaybackPipeline, PipelineHandle, HandleState
from .player import GuildPlayer
from .results import CommandResult, Outcome
from .registry import PlayerRegistry

__all__ = [
    "Track",
    "TrackQueue",
    "LoopMode",
    "PlayerStatus",
    "PlayerState",
    "PlaybackClock",
    "DEFAULT_LOOP_MODE",
    "TTLCache",
    "HistoryStore",
    "StateBus",
    "StateEvent",
    "PlaybackPipeline",
    "PipelineHandle",
    "HandleState",
    "GuildPlayer",
    "CommandResult",
    "Outcome",
    "PlayerRegistry",
]
