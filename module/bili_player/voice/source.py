"""
把 PipelineHandle 的 PCM 輸出包成 discord.AudioSource
"""

from typing import TYPE_CHECKING

import discord

from ..constants import FRAME_SIZE

if TYPE_CHECKING:
    from ..core.pipeline import PipelineHandle


class PipelineAudioSource(discord.AudioSource):
    """
    每次讀取 20ms 的 s16le 雙聲道 PCM

    read() 由 discord 的播放執行緒呼叫；回傳空位元組代表串流結束。
    程序的生命週期由 PlaybackPipeline 管理，這裡不負責清理。
    """

    def __init__(self, handle: "PipelineHandle", frame_size: int = FRAME_SIZE):
        self._handle = handle
        self._frame_size = frame_size

    def read(self) -> bytes:
        data = self._handle.read(self._frame_size)
        if len(data) != self._frame_size:
            return b""
        return data

    def is_opus(self) -> bool:
        return False
