"""
音樂播放器按鈕管理 - UI 層

提供三種視圖:
- PlayerControlView: 播放控制按鈕 (上一首、暫停/播放、下一首、循環、停止、隨機、清空)
- PaginationView: 播放清單翻頁按鈕
- SearchSelectView: 搜尋結果下拉選單
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Callable, Awaitable, Any
from discord import ButtonStyle, Interaction, SelectOption
from discord.ui import View, Button, Select
from loguru import logger

from ..constants import PAGINATION_VIEW_TIMEOUT, SEARCH_VIEW_TIMEOUT
from ..core.state import LoopMode

if TYPE_CHECKING:
    from ..core.state import PlayerState

# 按鈕動作類型
type ButtonAction = str
type ButtonCallback = Callable[[Interaction, ButtonAction], Awaitable[Any]]
type TimeoutCallback = Callable[[], Awaitable[Any]]
type SelectCallback = Callable[[Interaction, dict], Awaitable[Any]]

LOOP_EMOJIS = {
    LoopMode.NONE: "➡️",
    LoopMode.QUEUE: "🔁",
    LoopMode.TRACK: "🔂",
}


class PlayerControlView(View):
    """
    播放控制按鈕視圖

    第一列: 上一首 (⏮️)、播放/暫停 (▶️/⏸️)、下一首 (⏭️)、循環模式、停止 (⏹️)
    第二列: 隨機 (🔀)、清空 (🗑️)
    """

    # 按鈕 custom_id 常數
    ACTION_PREVIOUS = "bili_previous"
    ACTION_PLAY_PAUSE = "bili_play_pause"
    ACTION_NEXT = "bili_next"
    ACTION_LOOP = "bili_loop"
    ACTION_STOP = "bili_stop"
    ACTION_SHUFFLE = "bili_shuffle"
    ACTION_CLEAR = "bili_clear"

    def __init__(self, *, button_callback: ButtonCallback | None = None):
        super().__init__(timeout=None)  # 永不過期
        self.button_callback = button_callback
        self._create_buttons()

    def _add_button(self, emoji: str, style: ButtonStyle, custom_id: str, row: int) -> Button:
        button = Button(emoji=emoji, style=style, custom_id=custom_id, row=row)
        button.callback = self._handle_button
        self.add_item(button)
        return button

    def _create_buttons(self) -> None:
        """創建所有控制按鈕"""
        self.previous_button = self._add_button("⏮️", ButtonStyle.secondary, self.ACTION_PREVIOUS, 0)
        self.play_pause_button = self._add_button("▶️", ButtonStyle.primary, self.ACTION_PLAY_PAUSE, 0)
        self.next_button = self._add_button("⏭️", ButtonStyle.secondary, self.ACTION_NEXT, 0)
        self.loop_button = self._add_button(LOOP_EMOJIS[LoopMode.NONE], ButtonStyle.secondary, self.ACTION_LOOP, 0)
        self.stop_button = self._add_button("⏹️", ButtonStyle.danger, self.ACTION_STOP, 0)
        self.shuffle_button = self._add_button("🔀", ButtonStyle.secondary, self.ACTION_SHUFFLE, 1)
        self.clear_button = self._add_button("🗑️", ButtonStyle.secondary, self.ACTION_CLEAR, 1)

    async def _handle_button(self, interaction: Interaction) -> None:
        """
        處理按鈕點擊事件

        Args:
            interaction: Discord 互動對象
        """
        await interaction.response.defer()

        action = interaction.data.get("custom_id") if interaction.data else None
        if not action:
            logger.error("[PlayerControlView] 無法取得按鈕 custom_id")
            return

        logger.debug(f"[PlayerControlView] 按鈕點擊: {action}")

        if self.button_callback:
            try:
                await self.button_callback(interaction, action)
            except Exception as e:
                logger.exception(f"[PlayerControlView] 按鈕回調執行失敗: {action}, {e}")
        else:
            logger.warning("[PlayerControlView] 未設置 button_callback")

    def apply_state(self, state: PlayerState) -> None:
        """依狀態快照更新所有按鈕"""
        self.play_pause_button.emoji = "⏸️" if state.is_playing else "▶️"
        self.play_pause_button.disabled = state.current_track is None

        self.loop_button.emoji = LOOP_EMOJIS[state.loop_mode]
        self.loop_button.style = (
            ButtonStyle.secondary if state.loop_mode is LoopMode.NONE else ButtonStyle.success
        )

        self.previous_button.disabled = not state.has_previous
        self.next_button.disabled = not state.has_next
        self.shuffle_button.disabled = state.queue_length < 2
        self.clear_button.disabled = state.queue_length == 0


class PaginationView(View):
    """
    播放清單翻頁按鈕視圖

    包含兩個按鈕:
    - previous_page: 上一頁 (⬅️)
    - next_page: 下一頁 (➡️)
    """

    ACTION_PREVIOUS_PAGE = "pagination_previous"
    ACTION_NEXT_PAGE = "pagination_next"

    def __init__(
        self,
        *,
        button_callback: ButtonCallback | None = None,
        timeout_callback: TimeoutCallback | None = None,
        timeout: float = PAGINATION_VIEW_TIMEOUT,
        current_page: int = 1,
        total_pages: int = 1,
    ):
        """
        Args:
            button_callback: 按鈕點擊回調函數
            timeout_callback: 超時回調函數
            timeout: 超時時間（秒）
            current_page: 當前頁碼（從 1 開始）
            total_pages: 總頁數
        """
        super().__init__(timeout=timeout)
        self.button_callback = button_callback
        self.timeout_callback = timeout_callback
        self.current_page = current_page
        self.total_pages = total_pages

        self.previous_button = Button(
            emoji="⬅️",
            style=ButtonStyle.secondary,
            custom_id=self.ACTION_PREVIOUS_PAGE,
            row=0
        )
        self.previous_button.callback = self._handle_button
        self.add_item(self.previous_button)

        self.next_button = Button(
            emoji="➡️",
            style=ButtonStyle.secondary,
            custom_id=self.ACTION_NEXT_PAGE,
            row=0
        )
        self.next_button.callback = self._handle_button
        self.add_item(self.next_button)

        self._update_button_states()

    def _update_button_states(self) -> None:
        """根據當前頁碼更新按鈕狀態"""
        self.previous_button.disabled = self.current_page <= 1
        self.next_button.disabled = self.current_page >= self.total_pages

    async def _handle_button(self, interaction: Interaction) -> None:
        """處理按鈕點擊事件"""
        await interaction.response.defer()

        action = interaction.data.get("custom_id") if interaction.data else None
        if not action:
            logger.error("[PaginationView] 無法取得按鈕 custom_id")
            return

        if self.button_callback:
            try:
                await self.button_callback(interaction, action)
            except Exception as e:
                logger.exception(f"[PaginationView] 按鈕回調執行失敗: {action}, {e}")

    async def on_timeout(self) -> None:
        """處理視圖超時"""
        logger.debug("[PaginationView] 視圖已超時")
        if self.timeout_callback:
            try:
                await self.timeout_callback()
            except Exception as e:
                logger.exception(f"[PaginationView] 超時回調執行失敗: {e}")
        self.stop()

    def update_page(self, current_page: int, total_pages: int) -> None:
        self.current_page = current_page
        self.total_pages = total_pages
        self._update_button_states()


class SearchSelectView(View):
    """
    搜尋結果下拉選單

    選擇後呼叫 select_callback(interaction, video)，只允許發起搜尋的使用者操作
    """

    def __init__(
        self,
        videos: list[dict],
        *,
        owner_id: int,
        select_callback: SelectCallback,
        timeout_callback: TimeoutCallback | None = None,
        timeout: float = SEARCH_VIEW_TIMEOUT,
    ):
        super().__init__(timeout=timeout)
        self.videos = videos[:25]  # Discord 選單上限
        self.owner_id = owner_id
        self.select_callback = select_callback
        self.timeout_callback = timeout_callback

        self.select = Select(
            placeholder="選擇要播放的影片",
            options=[
                SelectOption(
                    label=f"{i + 1}. {video['title']}"[:100],
                    description=(video.get("uploader") or "未知")[:100],
                    value=str(i),
                )
                for i, video in enumerate(self.videos)
            ],
        )
        self.select.callback = self._handle_select
        self.add_item(self.select)

    async def interaction_check(self, interaction: Interaction) -> bool:
        if interaction.user.id != self.owner_id:
            await interaction.response.send_message("只有發起搜尋的人可以選擇", ephemeral=True)
            return False
        return True

    async def _handle_select(self, interaction: Interaction) -> None:
        video = self.videos[int(self.select.values[0])]
        logger.debug(f"[SearchSelectView] 選擇: {video['title']}")
        self.stop()
        try:
            await self.select_callback(interaction, video)
        except Exception as e:
            logger.exception(f"[SearchSelectView] 選擇回調執行失敗: {e}")

    async def on_timeout(self) -> None:
        if self.timeout_callback:
            try:
                await self.timeout_callback()
            except Exception as e:
                logger.exception(f"[SearchSelectView] 超時回調執行失敗: {e}")
