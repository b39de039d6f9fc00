"""
語音連線

VoiceConnection 包裝 discord.VoiceClient，提供播放管線需要的最小介面：
狀態查詢、等待就緒、播放 / 暫停 / 停止、斷線。

connect_voice() 負責加入（或移動到）語音頻道，逾時與連線錯誤會線性退避重試。
"""

import asyncio
from enum import Enum
from typing import Callable, Optional

import discord
from loguru import logger

from ..constants import VOICE_CONNECT_RETRIES, VOICE_CONNECT_TIMEOUT, VOICE_RETRY_BASE_DELAY
from ..utils.errors import VoiceConnectionError


class VoiceStatus(str, Enum):
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


class VoiceConnection:
    """單一伺服器的語音連線"""

    POLL_INTERVAL = 0.25

    def __init__(self, voice_client: discord.VoiceClient):
        self._client = voice_client
        self._destroyed = False

    @property
    def client(self) -> discord.VoiceClient:
        return self._client

    @property
    def channel_id(self) -> Optional[int]:
        channel = self._client.channel
        return channel.id if channel else None

    @property
    def status(self) -> VoiceStatus:
        if self._destroyed:
            return VoiceStatus.DESTROYED
        if self._client.is_connected():
            return VoiceStatus.READY
        return VoiceStatus.DISCONNECTED

    def is_ready(self) -> bool:
        return self.status is VoiceStatus.READY

    async def wait_until_ready(self) -> None:
        """
        等待連線就緒（逾時由呼叫端控制）

        Raises:
            VoiceConnectionError: 連線已被銷毀
        """
        while not self.is_ready():
            if self._destroyed:
                raise VoiceConnectionError("Voice connection destroyed while waiting")
            await asyncio.sleep(self.POLL_INTERVAL)

    # === 播放控制 ===

    def play(self, source: discord.AudioSource, after: Callable[[Optional[Exception]], None]) -> None:
        if self._client.is_playing() or self._client.is_paused():
            self._client.stop()
        self._client.play(source, after=after)

    def pause(self) -> None:
        self._client.pause()

    def resume(self) -> None:
        self._client.resume()

    def stop(self) -> None:
        self._client.stop()

    def is_playing(self) -> bool:
        return self._client.is_playing()

    def is_paused(self) -> bool:
        return self._client.is_paused()

    async def disconnect(self) -> None:
        """離開語音頻道並銷毀連線"""
        if self._destroyed:
            return
        self._destroyed = True
        try:
            await self._client.disconnect(force=True)
        except discord.HTTPException as e:
            logger.warning(f"[VoiceConnection] 離開語音頻道失敗: {e}")


async def connect_voice(
    channel: discord.VoiceChannel,
    *,
    timeout: float = VOICE_CONNECT_TIMEOUT,
    max_retries: int = VOICE_CONNECT_RETRIES,
    retry_delay: float = VOICE_RETRY_BASE_DELAY,
) -> VoiceConnection:
    """
    加入語音頻道；已連線時重用，頻道不同則移動

    Raises:
        VoiceConnectionError: 重試用盡仍無法連線
    """
    last_error: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            voice_client = channel.guild.voice_client
            if isinstance(voice_client, discord.VoiceClient) and voice_client.is_connected():
                if voice_client.channel is None or voice_client.channel.id != channel.id:
                    logger.info(f"[VoiceConnection] 移動到語音頻道: {channel.name}")
                    await voice_client.move_to(channel)
                return VoiceConnection(voice_client)

            if voice_client is not None:
                # 殘留的半斷線狀態
                await voice_client.disconnect(force=True)

            logger.info(f"[VoiceConnection] 加入語音頻道: {channel.name}")
            voice_client = await channel.connect(timeout=timeout, reconnect=True, self_deaf=True)
            return VoiceConnection(voice_client)

        except (asyncio.TimeoutError, discord.ConnectionClosed, OSError) as e:
            last_error = e
            if attempt >= max_retries:
                break
            delay = (attempt + 1) * retry_delay
            logger.warning(
                f"[VoiceConnection] 連線失敗（第 {attempt + 1} 次）: {e!r}，{delay}s 後重試"
            )
            await asyncio.sleep(delay)
        except discord.ClientException as e:
            raise VoiceConnectionError(f"Voice connection failed: {e}") from e

    raise VoiceConnectionError(f"Voice connection failed after {max_retries + 1} attempts: {last_error!r}")
