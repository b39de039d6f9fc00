"""
伺服器播放器

每個 Discord 伺服器一個 GuildPlayer，整合：
- 播放佇列（TrackQueue）與循環模式
- 播放管線（PlaybackPipeline）
- 語音連線
- 假結束重試、曲目結束後依循環模式前進
- 每次狀態改變發布到 StateBus
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional
from loguru import logger

from ..constants import FALSE_IDLE_TAIL, FALSE_IDLE_THRESHOLD, MAX_TRACK_RETRIES, RETRY_DELAY
from ..ffmpeg.transcoder import FFmpegTranscoder
from ..utils.decorators import log_operation, publishes_state
from ..utils.errors import MusicError, PipelineError, PipelineSupersededError, VoiceConnectionError
from .events import StateBus
from .pipeline import PlaybackPipeline
from .queue import Track, TrackQueue
from .state import DEFAULT_LOOP_MODE, LoopMode, PlaybackClock, PlayerState, PlayerStatus

Connector = Callable[[Any], Awaitable[Any]]
Resolver = Callable[[str], Awaitable[dict]]


class GuildPlayer:
    """
    單一伺服器的播放狀態機

    使用方式：
        player = GuildPlayer(guild_id, bus=bus, connector=connect_voice, resolver=extractor.extract)
        await player.ensure_connected(channel)
        player.enqueue(info, requested_by=user.id)
        await player.play_next()
    """

    def __init__(
        self,
        guild_id: int,
        *,
        bus: Optional[StateBus] = None,
        connector: Optional[Connector] = None,
        resolver: Optional[Resolver] = None,
        pipeline: Optional[PlaybackPipeline] = None,
        transcoder: Optional[FFmpegTranscoder] = None,
        loop_mode: LoopMode = DEFAULT_LOOP_MODE,
        retry_delay: float = RETRY_DELAY,
        max_retries: int = MAX_TRACK_RETRIES,
    ):
        self.guild_id = guild_id
        self.queue = TrackQueue()
        self.clock = PlaybackClock()
        self.loop_mode = loop_mode
        self.status = PlayerStatus.IDLE

        self._bus = bus
        self._connector = connector
        self._resolver = resolver
        self._retry_delay = retry_delay
        self._max_retries = max_retries

        self.pipeline = pipeline or PlaybackPipeline(transcoder or FFmpegTranscoder(), guild_id=guild_id)
        self.pipeline.bind(on_idle=self.on_track_idle, on_error=self.on_track_error)

        self._connection = None
        # 每次嘗試播放遞增，較舊的嘗試完成時不得覆寫狀態
        self._attempt = 0
        self._consecutive_failures = 0

        logger.debug(f"[GuildPlayer] 伺服器 {guild_id} 初始化，循環模式: {loop_mode.value}")

    # === 屬性 ===

    @property
    def connection(self):
        return self._connection

    @property
    def current_track(self) -> Optional[Track]:
        return self.queue.current_track

    @property
    def current_index(self) -> int:
        return self.queue.current_index

    @property
    def is_playing(self) -> bool:
        return self.status is PlayerStatus.PLAYING

    @property
    def is_paused(self) -> bool:
        return self.status is PlayerStatus.PAUSED

    @property
    def is_active(self) -> bool:
        """播放中、暫停中或正在載入"""
        return self.status in (PlayerStatus.LOADING, PlayerStatus.PLAYING, PlayerStatus.PAUSED)

    @property
    def current_position(self) -> int:
        return self.clock.current_position

    def can_skip(self) -> bool:
        return self.queue.has_next(self.loop_mode)

    def can_go_back(self) -> bool:
        return self.queue.has_previous(self.loop_mode)

    # === 連線 ===

    async def ensure_connected(self, channel) -> Any:
        """
        確保已在指定語音頻道

        Raises:
            VoiceConnectionError: 無法連線
        """
        connection = self._connection
        if connection is not None and connection.is_ready() and connection.channel_id == channel.id:
            return connection
        if self._connector is None:
            raise VoiceConnectionError("No voice connector configured")

        self._connection = await self._connector(channel)
        logger.info(f"[GuildPlayer] 伺服器 {self.guild_id} 已連線到語音頻道 {channel.id}")
        return self._connection

    def attach_connection(self, connection) -> None:
        self._connection = connection

    # === 佇列 ===

    @publishes_state
    async def enqueue(self, track_data: Any, requested_by: Optional[int] = None) -> Track:
        return self.queue.enqueue(track_data, requested_by)

    @publishes_state
    async def shuffle(self) -> bool:
        self.queue.shuffle()
        return True

    @publishes_state
    async def clear(self) -> int:
        """清空佇列，保留目前曲目"""
        return self.queue.clear(keep_current=True)

    async def remove_track(self, index: int) -> bool:
        """
        移除指定位置（0-based）的曲目

        移除的是目前曲目時先停止管線；原本在播放則接著播放同位置的曲目
        """
        if self.queue.get(index) is None:
            return False

        was_current = index == self.queue.current_index
        was_active = self.is_active

        if was_current:
            await self.pipeline.stop()
            self.clock.stop()

        self.queue.remove_at(index)

        if was_current:
            if was_active and self.queue.current_track is not None:
                try:
                    await self.play_current()
                except MusicError as e:
                    logger.error(f"[GuildPlayer] 移除後接續播放失敗: {e}")
                    self._publish_state()
                return True
            self.status = PlayerStatus.IDLE

        self._publish_state()
        return True

    @publishes_state
    async def set_loop_mode(self, mode: Any) -> LoopMode:
        self.loop_mode = LoopMode(mode)
        logger.info(f"[GuildPlayer] 伺服器 {self.guild_id} 循環模式: {self.loop_mode.value}")
        return self.loop_mode

    # === 播放 ===

    async def play_next(self) -> bool:
        """
        開始或繼續播放

        沒有目前曲目時從 resume_index() 開始（播完後補歌則從新歌開始），
        有目前曲目時播放同一個位置，不會退回第一首
        """
        if self.queue.is_empty:
            return False
        if self.queue.current_track is None:
            self.queue.set_index(self.queue.resume_index())
        return await self.play_current()

    async def play_current(self) -> bool:
        """
        播放游標所在的曲目

        Raises:
            MusicError: 解析音訊或啟動管線失敗（語音連線保留）
        """
        track = self.queue.current_track
        if track is None:
            return False
        if self._connection is None:
            logger.warning(f"[GuildPlayer] 伺服器 {self.guild_id} 尚未連線語音，無法播放")
            return False

        self._attempt += 1
        attempt = self._attempt
        self.status = PlayerStatus.LOADING
        self.clock.stop()

        try:
            await self._resolve_audio(track)
            if attempt != self._attempt:
                return self.queue.current_track is not None
            if self._connection is None:
                return False
            await self.pipeline.start(track, self._connection)
        except PipelineSupersededError:
            logger.debug(f"[GuildPlayer] 播放請求已被取代: {track.title}")
            return self.queue.current_track is not None
        except MusicError:
            if attempt != self._attempt:
                logger.debug(f"[GuildPlayer] 忽略已失效播放請求的錯誤: {track.title}")
                return False
            self.status = PlayerStatus.IDLE
            self._publish_state()
            raise

        if attempt != self._attempt:
            return self.queue.current_track is not None

        self.status = PlayerStatus.PLAYING
        self.clock.start(track.duration)
        self._consecutive_failures = 0
        logger.info(f"[GuildPlayer] 伺服器 {self.guild_id} 正在播放 #{self.queue.current_index + 1}: {track.title}")
        self._publish_state()
        return True

    def _cancel_pending(self) -> None:
        """讓進行中的播放嘗試失效"""
        self._attempt += 1

    async def _resolve_audio(self, track: Track) -> None:
        """延遲解析沒有串流 URL 的曲目"""
        if track.audio_url:
            return
        if self._resolver is None or not track.url:
            raise PipelineError(f"Track has no audio stream URL: {track.title}")

        logger.debug(f"[GuildPlayer] 解析音訊串流: {track.url}")
        info = await self._resolver(track.url)
        track.audio_url = info.get("audio_url") or ""
        if not track.duration:
            track.duration = int(info.get("duration") or 0)
        if not track.thumbnail:
            track.thumbnail = info.get("thumbnail") or ""
        if not track.audio_url:
            raise PipelineError(f"Resolver returned no audio stream URL: {track.title}")

    async def skip(self) -> bool:
        """
        下一首

        還有下一首就前進；佇列循環時回到第一首；單曲循環時重播；
        否則停止播放並清除游標，佇列與連線保持不變

        Returns:
            是否有下一首
        """
        index = self.queue.next_index(self.loop_mode)
        if index is None:
            await self._finish_queue()
            return False

        self.queue.set_index(index)
        return await self.play_current()

    async def previous(self) -> bool:
        """上一首；佇列循環時從第一首跳到最後一首"""
        index = self.queue.previous_index(self.loop_mode)
        if index is None:
            return False

        self.queue.set_index(index)
        return await self.play_current()

    async def _finish_queue(self) -> None:
        self._cancel_pending()
        await self.pipeline.stop()
        self.queue.mark_exhausted()
        self.clock.stop()
        self.status = PlayerStatus.IDLE
        logger.info(f"[GuildPlayer] 伺服器 {self.guild_id} 佇列已播放完畢")
        self._publish_state()

    @publishes_state
    async def pause(self) -> bool:
        if self.status is not PlayerStatus.PLAYING:
            return False
        if not self.pipeline.pause():
            return False
        self.clock.pause()
        self.status = PlayerStatus.PAUSED
        return True

    @publishes_state
    async def resume(self) -> bool:
        if self.status is not PlayerStatus.PAUSED:
            return False
        if not self.pipeline.resume():
            return False
        self.clock.resume()
        self.status = PlayerStatus.PLAYING
        return True

    @publishes_state
    @log_operation("停止播放")
    async def stop(self) -> bool:
        """終止管線、清空佇列並離開語音頻道"""
        self._cancel_pending()
        await self.pipeline.stop()
        self.queue.clear(keep_current=False)
        self.clock.stop()
        self.status = PlayerStatus.STOPPED

        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.disconnect()
        return True

    @publishes_state
    @log_operation("重置播放器")
    async def reset(self) -> bool:
        """語音連線中斷：清空佇列回到閒置"""
        self._cancel_pending()
        await self.pipeline.stop()
        self.queue.clear(keep_current=False)
        self.clock.stop()
        self.status = PlayerStatus.IDLE

        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.disconnect()
        return True

    # === 管線回報 ===

    async def on_track_idle(self, track: Track) -> None:
        """
        串流結束

        播放不到 3 秒且離片尾還遠視為假結束，原地重試；否則視為正常結束
        """
        if track is not self.queue.current_track:
            logger.debug(f"[GuildPlayer] 忽略非目前曲目的結束訊號: {track.title}")
            return

        elapsed = self.clock.elapsed
        reached_tail = track.duration > 0 and elapsed >= track.duration - FALSE_IDLE_TAIL

        if elapsed >= FALSE_IDLE_THRESHOLD or reached_tail:
            logger.info(f"[GuildPlayer] 播放完畢: {track.title}（{elapsed:.1f}s）")
            track.retry_count = 0
            self.clock.stop()
            await self.handle_track_end()
        else:
            logger.warning(f"[GuildPlayer] 疑似假結束: {track.title} 僅播放 {elapsed:.1f}s")
            await self.retry_current(track)

    async def on_track_error(self, track: Track, error: PipelineError) -> None:
        if track is not self.queue.current_track:
            return
        logger.error(f"[GuildPlayer] 播放錯誤: {track.title} - {error}")
        self.clock.stop()
        await self.handle_track_end()

    async def retry_current(self, track: Track) -> None:
        """原地重試目前曲目，超過上限則當作曲目結束"""
        track.retry_count += 1
        if track.retry_count > self._max_retries:
            logger.error(f"[GuildPlayer] 重試 {self._max_retries} 次仍失敗，跳過: {track.title}")
            track.retry_count = 0
            await self.handle_track_end()
            return

        logger.warning(f"[GuildPlayer] 第 {track.retry_count}/{self._max_retries} 次重試: {track.title}")
        await asyncio.sleep(self._retry_delay)
        if track is not self.queue.current_track:
            return

        try:
            await self.play_current()
        except MusicError as e:
            logger.error(f"[GuildPlayer] 重試失敗: {e}")
            await self.handle_track_end()

    async def handle_track_end(self) -> None:
        """曲目結束：單曲循環則重播，否則下一首"""
        track = self.queue.current_track
        if track is None:
            logger.warning(f"[GuildPlayer] 伺服器 {self.guild_id} 曲目結束時沒有目前曲目")
            return

        if self.loop_mode is LoopMode.TRACK:
            track.retry_count = 0
            await self._run_automatic(self.play_current)
        else:
            await self._run_automatic(self.skip)

    async def _run_automatic(self, operation: Callable[[], Awaitable[bool]]) -> None:
        """自動播放路徑：失敗就往下一首，連續失敗次數不超過佇列長度"""
        while True:
            try:
                await operation()
                return
            except MusicError as e:
                self._consecutive_failures += 1
                logger.error(f"[GuildPlayer] 自動播放失敗（連續 {self._consecutive_failures} 次）: {e}")
                if self.loop_mode is LoopMode.TRACK or self._consecutive_failures >= len(self.queue):
                    logger.warning(f"[GuildPlayer] 伺服器 {self.guild_id} 停止自動播放")
                    return
                operation = self.skip

    # === 狀態 ===

    def get_state(self) -> PlayerState:
        return PlayerState(
            guild_id=self.guild_id,
            is_playing=self.is_playing,
            is_paused=self.is_paused,
            current_track=self.queue.current_track,
            current_index=self.queue.current_index,
            queue_length=len(self.queue),
            has_next=self.can_skip(),
            has_previous=self.can_go_back(),
            loop_mode=self.loop_mode,
            status=self.status,
            position=self.clock.current_position,
        )

    def _publish_state(self) -> None:
        if self._bus is not None:
            self._bus.publish(self.guild_id, self.get_state())
