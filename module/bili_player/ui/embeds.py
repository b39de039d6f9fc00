"""
Discord Embed 生成器

負責生成各種情境的 Embed 訊息：
- 正在播放（進度條、循環模式）
- 播放清單分頁
- 新增/移除曲目、搜尋結果
- 錯誤訊息與建議
"""

import discord
from typing import List, Optional, TYPE_CHECKING

from ..core.state import LoopMode, PlayerState, PlayerStatus, format_time, progress_bar

if TYPE_CHECKING:
    from ..core.queue import Track


LOOP_MODE_LABELS = {
    LoopMode.NONE: "關閉",
    LoopMode.TRACK: "單曲循環 🔂",
    LoopMode.QUEUE: "清單循環 🔁",
}

STATUS_LABELS = {
    PlayerStatus.IDLE: "閒置",
    PlayerStatus.LOADING: "載入中 ⏳",
    PlayerStatus.PLAYING: "正在播放 ▶️",
    PlayerStatus.PAUSED: "已暫停 ⏸️",
    PlayerStatus.STOPPED: "已停止 ⏹️",
}


class EmbedBuilder:
    """
    Discord Embed 管理器

    使用方式：
        embeds = EmbedBuilder()
        embed = embeds.now_playing(player.get_state())
    """

    # 顏色定義
    COLOR_PLAYING = discord.Color.blurple()
    COLOR_PAUSED = discord.Color.orange()
    COLOR_SUCCESS = discord.Color.green()
    COLOR_ERROR = discord.Color.red()
    COLOR_INFO = discord.Color.blue()
    COLOR_BILIBILI = discord.Color.from_rgb(0, 174, 236)

    # === 播放相關 ===

    def now_playing(self, state: PlayerState) -> discord.Embed:
        """
        根據狀態快照生成播放面板

        沒有目前曲目時顯示閒置訊息
        """
        track = state.current_track
        if track is None:
            return self.info("沒有正在播放的曲目", "使用 /播放 加入 B站影片")

        color = self.COLOR_PAUSED if state.is_paused else self.COLOR_PLAYING
        embed = discord.Embed(color=color)
        embed.set_author(name=track.uploader or "未知")
        embed.description = f"{state.current_index + 1}. [{track.title}]({track.url})"

        status = STATUS_LABELS.get(state.status, state.status.value)
        bar = progress_bar(state.position, track.duration)
        embed.add_field(
            name="狀態",
            value=f"{status}\n{format_time(state.position)} / {format_time(track.duration)}\n{bar}",
            inline=False,
        )

        if track.requested_by:
            embed.add_field(name="點播", value=f"<@{track.requested_by}>", inline=True)
        embed.add_field(name="佇列", value=f"{state.current_index + 1} / {state.queue_length}", inline=True)

        if track.thumbnail:
            embed.set_thumbnail(url=track.thumbnail)

        embed.set_footer(text=f"循環模式: {LOOP_MODE_LABELS.get(state.loop_mode, state.loop_mode.value)}")
        return embed

    # === 清單相關 ===

    def queue_page(self, page_data: dict) -> discord.Embed:
        """
        從 PlayerRegistry.get_queue() 的結果生成播放清單 Embed（編號皆為 1-based）
        """
        embed = discord.Embed(title="🎶 播放清單", color=self.COLOR_INFO)
        tracks: List["Track"] = page_data["tracks"]

        if not tracks:
            embed.description = "目前播放清單中沒有曲目！"
        else:
            lines = []
            for offset, track in enumerate(tracks):
                index = page_data["start_index"] + offset
                prefix = "▶️ " if index == page_data["current_index"] else ""
                lines.append(f"{prefix}{index}. [{track.title}]({track.url}) `{format_time(track.duration)}`")
            embed.description = "\n".join(lines)

        loop_mode = page_data.get("loop_mode")
        footer = f"頁數: {page_data['current_page']}/{page_data['total_pages']} | 總曲目數: {page_data['total_tracks']}"
        if loop_mode is not None:
            footer += f" | 循環: {LOOP_MODE_LABELS.get(loop_mode, loop_mode)}"
        embed.set_footer(text=footer)
        return embed

    # === 操作結果 ===

    def added_track(self, track: "Track", position: Optional[int] = None, started: bool = False) -> discord.Embed:
        """新增曲目成功"""
        embed = discord.Embed(
            title="▶️ 開始播放" if started else "✅ 已加入播放清單",
            description=f"[{track.title}]({track.url})",
            color=self.COLOR_SUCCESS,
        )
        embed.set_author(name=track.uploader or "未知")
        if track.thumbnail:
            embed.set_thumbnail(url=track.thumbnail)

        info_parts = []
        if position:
            info_parts.append(f"位置: #{position}")
        info_parts.append(f"時長: {format_time(track.duration)}")
        embed.add_field(name="資訊", value=" | ".join(info_parts), inline=False)
        return embed

    def added_tracks(self, count: int, keyword: str) -> discord.Embed:
        return discord.Embed(
            title="✅ 已建立自動歌單",
            description=f"從「**{keyword}**」精選了 **{count}** 首曲目",
            color=self.COLOR_BILIBILI,
        )

    def removed_track(self, track: "Track") -> discord.Embed:
        embed = discord.Embed(
            title="🗑️ 已移除曲目",
            description=f"[{track.title}]({track.url})",
            color=discord.Color.orange(),
        )
        if track.thumbnail:
            embed.set_thumbnail(url=track.thumbnail)
        return embed

    def loop_mode_changed(self, mode: LoopMode) -> discord.Embed:
        return self.success(f"循環模式: {LOOP_MODE_LABELS.get(mode, mode.value)}")

    def search_results(self, keyword: str, videos: List[dict]) -> discord.Embed:
        """搜尋結果列表，搭配 SearchSelectView 使用"""
        embed = discord.Embed(title=f"🔍 搜尋「{keyword}」", color=self.COLOR_BILIBILI)
        if not videos:
            embed.description = "找不到相關影片"
            return embed

        lines = []
        for i, video in enumerate(videos, start=1):
            lines.append(
                f"{i}. [{video['title']}]({video['url']}) `{format_time(video.get('duration'))}`"
                f" - {video.get('uploader') or '未知'}"
            )
        embed.description = "\n".join(lines)
        embed.set_footer(text="從下方選單選擇要播放的影片")
        return embed

    # === 通用訊息 ===

    def success(self, message: str, description: str = None) -> discord.Embed:
        """成功訊息"""
        return discord.Embed(title=f"✅ {message}", description=description, color=self.COLOR_SUCCESS)

    def error(self, message: str, suggestion: str = None) -> discord.Embed:
        """錯誤訊息，附上建議"""
        embed = discord.Embed(title=f"❌ {message}", color=self.COLOR_ERROR)
        if suggestion:
            embed.add_field(name="💡 建議", value=suggestion, inline=False)
        return embed

    def info(self, message: str, description: str = None) -> discord.Embed:
        """資訊訊息"""
        return discord.Embed(title=f"ℹ️ {message}", description=description, color=self.COLOR_INFO)
