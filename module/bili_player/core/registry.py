"""
播放器註冊表

以 guild_id 對應 GuildPlayer，負責：
- 延遲建立每個伺服器的播放器（每個伺服器恰好一個）
- 把高階指令轉給對應的播放器
- 將成功 / 例外轉換成 CommandResult，永不拋出例外
"""

from typing import Any, Callable, Dict, Iterable, Optional
from loguru import logger

from ..constants import PLAYLIST_PER_PAGE
from ..ffmpeg.transcoder import FFmpegTranscoder
from ..voice.connection import connect_voice
from .events import StateBus
from .player import GuildPlayer
from .results import CommandResult, Outcome
from .state import LoopMode, PlayerState

PlayerFactory = Callable[[int], GuildPlayer]


class PlayerRegistry:
    """
    使用方式：
        registry = PlayerRegistry(extractor=extractor, bus=bus)
        result = await registry.play(guild.id, url, voice_channel, requested_by=user.id)
        if not result.success:
            await send(result.error, result.suggestion)
    """

    def __init__(
        self,
        *,
        extractor=None,
        bus: Optional[StateBus] = None,
        connector: Callable = connect_voice,
        transcoder: Optional[FFmpegTranscoder] = None,
        player_factory: Optional[PlayerFactory] = None,
    ):
        self.extractor = extractor
        self.bus = bus or StateBus()
        self._connector = connector
        self._transcoder = transcoder or FFmpegTranscoder()
        self._player_factory = player_factory or self._create_player
        self._players: Dict[int, GuildPlayer] = {}

    def _create_player(self, guild_id: int) -> GuildPlayer:
        return GuildPlayer(
            guild_id,
            bus=self.bus,
            connector=self._connector,
            resolver=self.extractor.extract if self.extractor else None,
            transcoder=self._transcoder,
        )

    # === 查詢 ===

    def get_or_create(self, guild_id: int) -> GuildPlayer:
        player = self._players.get(guild_id)
        if player is None:
            player = self._player_factory(guild_id)
            self._players[guild_id] = player
            logger.debug(f"[PlayerRegistry] 建立伺服器 {guild_id} 的播放器")
        return player

    def get(self, guild_id: int) -> Optional[GuildPlayer]:
        return self._players.get(guild_id)

    @property
    def players(self) -> Dict[int, GuildPlayer]:
        return dict(self._players)

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._players

    def __len__(self) -> int:
        return len(self._players)

    def get_state(self, guild_id: int) -> PlayerState:
        return self.get_or_create(guild_id).get_state()

    def get_queue(self, guild_id: int, page: int = 1, per_page: int = PLAYLIST_PER_PAGE) -> dict:
        player = self.get_or_create(guild_id)
        data = player.queue.get_page(page, per_page)
        data["loop_mode"] = player.loop_mode
        data["current_track"] = player.current_track
        return data

    def notify(self, guild_id: int) -> None:
        """重新發布目前狀態（進度條更新用）"""
        player = self._players.get(guild_id)
        if player is not None:
            self.bus.publish(guild_id, player.get_state())

    def statistics(self) -> dict:
        players = list(self._players.values())
        return {
            "players": len(players),
            "playing": sum(1 for p in players if p.is_playing),
            "queued_tracks": sum(len(p.queue) for p in players),
        }

    # === 播放 ===

    async def play(self, guild_id: int, url: str, channel, requested_by: Optional[int] = None) -> CommandResult:
        """解析影片、加入語音、入列，閒置時開始播放"""
        if channel is None:
            return CommandResult.fail(Outcome.VOICE_CHANNEL_REQUIRED)
        if self.extractor is None or not await self.extractor.is_available():
            return CommandResult.fail(Outcome.EXTRACTOR_UNAVAILABLE)

        try:
            info = await self.extractor.extract(url)
        except Exception as e:
            logger.warning(f"[PlayerRegistry] 解析影片失敗: {url} - {e}")
            return CommandResult.fail(Outcome.EXTRACTION_FAILED, e)

        player = self.get_or_create(guild_id)
        try:
            await player.ensure_connected(channel)
        except Exception as e:
            logger.error(f"[PlayerRegistry] 加入語音頻道失敗: {e}")
            return CommandResult.fail(Outcome.VOICE_JOIN_FAILED, e)

        track = await player.enqueue(info, requested_by)
        return await self._start_if_idle(player, track)

    async def enqueue_tracks(
        self,
        guild_id: int,
        channel,
        entries: Iterable[dict],
        requested_by: Optional[int] = None,
        replace: bool = True,
    ) -> CommandResult:
        """
        批次入列（自動歌單用），串流 URL 留待播放前解析

        Args:
            replace: 是否先清空佇列（保留目前曲目）
        """
        if channel is None:
            return CommandResult.fail(Outcome.VOICE_CHANNEL_REQUIRED)
        entries = list(entries)
        if not entries:
            return CommandResult.fail(Outcome.EXTRACTION_FAILED)

        player = self.get_or_create(guild_id)
        try:
            await player.ensure_connected(channel)
        except Exception as e:
            logger.error(f"[PlayerRegistry] 加入語音頻道失敗: {e}")
            return CommandResult.fail(Outcome.VOICE_JOIN_FAILED, e)

        if replace:
            player.queue.clear(keep_current=True)
        first = None
        for entry in entries:
            track = player.queue.enqueue(entry, requested_by)
            first = first or track
        logger.info(f"[PlayerRegistry] 伺服器 {guild_id} 批次加入 {len(entries)} 首")
        self.notify(guild_id)

        return await self._start_if_idle(player, first)

    async def play_queued(self, guild_id: int) -> CommandResult:
        """閒置時從目前位置繼續播放佇列（播放鍵在停止狀態下使用）"""
        player = self._players.get(guild_id)
        if player is None or player.queue.is_empty:
            return CommandResult.fail(Outcome.QUEUE_EMPTY)
        if player.connection is None:
            return CommandResult.fail(Outcome.VOICE_CHANNEL_REQUIRED, state=player.get_state())
        return await self._start_if_idle(player, player.current_track)

    async def _start_if_idle(self, player: GuildPlayer, track) -> CommandResult:
        started = False
        if not player.is_active:
            try:
                started = await player.play_next()
            except Exception as e:
                logger.error(f"[PlayerRegistry] 開始播放失敗: {e}")
                return CommandResult.fail(Outcome.PIPELINE_FAILED, e, state=player.get_state())
        return CommandResult.ok(track=track, state=player.get_state(), started=started)

    # === 播放控制 ===

    async def pause(self, guild_id: int) -> CommandResult:
        player = self._players.get(guild_id)
        if player is None or not player.is_playing:
            return CommandResult.fail(Outcome.NOTHING_PLAYING)
        if not await player.pause():
            return CommandResult.fail(Outcome.NOTHING_PLAYING, state=player.get_state())
        return CommandResult.ok(track=player.current_track, state=player.get_state())

    async def resume(self, guild_id: int) -> CommandResult:
        player = self._players.get(guild_id)
        if player is None or not player.is_paused:
            return CommandResult.fail(Outcome.NOT_PAUSED)
        if not await player.resume():
            return CommandResult.fail(Outcome.NOT_PAUSED, state=player.get_state())
        return CommandResult.ok(track=player.current_track, state=player.get_state())

    async def skip(self, guild_id: int) -> CommandResult:
        player = self._players.get(guild_id)
        if player is None or player.current_track is None:
            return CommandResult.fail(Outcome.NOTHING_PLAYING)
        try:
            moved = await player.skip()
        except Exception as e:
            logger.error(f"[PlayerRegistry] 下一首失敗: {e}")
            return CommandResult.fail(Outcome.PIPELINE_FAILED, e, state=player.get_state())
        if not moved:
            return CommandResult.fail(Outcome.NO_NEXT_TRACK, state=player.get_state())
        return CommandResult.ok(track=player.current_track, state=player.get_state())

    async def previous(self, guild_id: int) -> CommandResult:
        player = self._players.get(guild_id)
        if player is None or player.queue.is_empty:
            return CommandResult.fail(Outcome.NOTHING_PLAYING)
        try:
            moved = await player.previous()
        except Exception as e:
            logger.error(f"[PlayerRegistry] 上一首失敗: {e}")
            return CommandResult.fail(Outcome.PIPELINE_FAILED, e, state=player.get_state())
        if not moved:
            return CommandResult.fail(Outcome.NO_PREVIOUS_TRACK, state=player.get_state())
        return CommandResult.ok(track=player.current_track, state=player.get_state())

    async def stop(self, guild_id: int) -> CommandResult:
        """停止並銷毀播放器"""
        player = self._players.pop(guild_id, None)
        if player is None:
            return CommandResult.fail(Outcome.NOTHING_PLAYING)
        try:
            await player.stop()
        except Exception as e:
            logger.exception(f"[PlayerRegistry] 停止播放器失敗: {e}")
            return CommandResult.fail(Outcome.PIPELINE_FAILED, e)
        return CommandResult.ok(state=player.get_state())

    # === 佇列 ===

    async def set_loop_mode(self, guild_id: int, mode: Any) -> CommandResult:
        try:
            loop_mode = LoopMode(mode)
        except ValueError:
            return CommandResult.fail(Outcome.INVALID_LOOP_MODE)
        player = self.get_or_create(guild_id)
        await player.set_loop_mode(loop_mode)
        return CommandResult.ok(state=player.get_state())

    async def cycle_loop_mode(self, guild_id: int) -> CommandResult:
        """按鈕用：none → queue → track → none"""
        player = self.get_or_create(guild_id)
        return await self.set_loop_mode(guild_id, player.loop_mode.next())

    async def remove_track(self, guild_id: int, index: int) -> CommandResult:
        """移除曲目（index 為 0-based）"""
        player = self._players.get(guild_id)
        if player is None or player.queue.is_empty:
            return CommandResult.fail(Outcome.QUEUE_EMPTY)
        track = player.queue.get(index)
        if track is None:
            return CommandResult.fail(Outcome.INVALID_INDEX, state=player.get_state())
        try:
            await player.remove_track(index)
        except Exception as e:
            logger.error(f"[PlayerRegistry] 移除曲目失敗: {e}")
            return CommandResult.fail(Outcome.PIPELINE_FAILED, e, state=player.get_state())
        return CommandResult.ok(track=track, state=player.get_state())

    async def shuffle(self, guild_id: int) -> CommandResult:
        player = self._players.get(guild_id)
        if player is None or player.queue.is_empty:
            return CommandResult.fail(Outcome.QUEUE_EMPTY)
        if len(player.queue) < 2:
            return CommandResult.fail(Outcome.NOT_ENOUGH_TRACKS, state=player.get_state())
        await player.shuffle()
        return CommandResult.ok(state=player.get_state())

    async def clear(self, guild_id: int) -> CommandResult:
        player = self._players.get(guild_id)
        if player is None or player.queue.is_empty:
            return CommandResult.fail(Outcome.QUEUE_EMPTY)
        await player.clear()
        return CommandResult.ok(state=player.get_state())

    # === 生命週期 ===

    async def handle_voice_disconnect(self, guild_id: int) -> None:
        """機器人被移出語音頻道：播放器重置並移除"""
        player = self._players.pop(guild_id, None)
        if player is None:
            return
        logger.info(f"[PlayerRegistry] 伺服器 {guild_id} 語音連線中斷，重置播放器")
        try:
            await player.reset()
        except Exception as e:
            logger.exception(f"[PlayerRegistry] 重置播放器失敗: {e}")

    async def cleanup(self) -> None:
        """停止所有播放器"""
        players, self._players = self._players, {}
        for guild_id, player in players.items():
            try:
                await player.stop()
            except Exception as e:
                logger.exception(f"[PlayerRegistry] 清理伺服器 {guild_id} 播放器失敗: {e}")
        logger.info(f"[PlayerRegistry] 已清理 {len(players)} 個播放器")
