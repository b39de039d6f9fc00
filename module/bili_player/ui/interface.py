"""
播放面板渲染

訂閱 StateBus，每個伺服器維護一則播放面板訊息：
- 狀態改變時原地編輯訊息，訊息被刪除才重新發送
- 同一伺服器同時只有一個渲染進行，被新事件取代的渲染直接放棄
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import discord
from loguru import logger

from ..core.events import StateBus, StateEvent
from .buttons import ButtonCallback, PlayerControlView
from .embeds import EmbedBuilder


@dataclass
class PanelContext:
    channel: discord.abc.Messageable
    message: Optional[discord.Message] = None
    view: Optional[PlayerControlView] = None
    rendered_seq: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class PlayerInterface:
    """
    使用方式：
        interface = PlayerInterface(bus, button_callback=cog.on_button)
        interface.start()
        interface.bind(guild.id, interaction.channel)
    """

    def __init__(
        self,
        bus: StateBus,
        *,
        button_callback: Optional[ButtonCallback] = None,
        embeds: Optional[EmbedBuilder] = None,
    ):
        self.bus = bus
        self.button_callback = button_callback
        self.embeds = embeds or EmbedBuilder()
        self._contexts: Dict[int, PanelContext] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.subscribe(self.on_state)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def bind(self, guild_id: int, channel: discord.abc.Messageable) -> PanelContext:
        """指定面板所在的文字頻道；換頻道時下一次渲染會發新訊息"""
        context = self._contexts.get(guild_id)
        if context is None:
            context = PanelContext(channel=channel)
            self._contexts[guild_id] = context
        elif context.channel != channel:
            context.channel = channel
            context.message = None
        return context

    def context(self, guild_id: int) -> Optional[PanelContext]:
        return self._contexts.get(guild_id)

    async def detach(self, guild_id: int, farewell: Optional[discord.Embed] = None) -> None:
        """解除綁定，可選擇把最後一則面板改成道別訊息"""
        context = self._contexts.pop(guild_id, None)
        if context is None or context.message is None:
            return
        changes = {"view": None}
        if farewell is not None:
            changes["embed"] = farewell
        async with context.lock:
            try:
                await context.message.edit(**changes)
            except discord.HTTPException as e:
                logger.debug(f"[PlayerInterface] 無法更新最後的面板: {e}")

    async def on_state(self, event: StateEvent) -> None:
        context = self._contexts.get(event.guild_id)
        if context is None:
            return

        async with context.lock:
            if not self.bus.is_current(event.guild_id, event.seq):
                logger.debug(f"[PlayerInterface] 略過過期的渲染 #{event.seq}")
                return

            if context.view is None:
                context.view = PlayerControlView(button_callback=self.button_callback)
            context.view.apply_state(event.state)
            embed = self.embeds.now_playing(event.state)

            message = await self._render(context, embed)
            if message is not None:
                context.message = message

            if not self.bus.is_current(event.guild_id, event.seq):
                logger.debug(f"[PlayerInterface] 渲染 #{event.seq} 完成時已被取代")
                return
            context.rendered_seq = event.seq

    async def _render(self, context: PanelContext, embed: discord.Embed) -> Optional[discord.Message]:
        if context.message is not None:
            try:
                return await context.message.edit(embed=embed, view=context.view)
            except discord.NotFound:
                logger.warning("[PlayerInterface] 播放面板訊息已被刪除，重新發送")
                context.message = None
            except discord.HTTPException as e:
                logger.error(f"[PlayerInterface] 更新播放面板失敗: {e}")
                return None

        try:
            return await context.channel.send(embed=embed, view=context.view)
        except discord.HTTPException as e:
            logger.error(f"[PlayerInterface] 發送播放面板失敗: {e}")
            return None

    async def repost(self, guild_id: int) -> None:
        """把面板移到頻道最新位置"""
        context = self._contexts.get(guild_id)
        if context is None:
            return
        old = context.message
        context.message = None
        if old is not None:
            try:
                await old.delete()
            except discord.HTTPException:
                logger.debug("[PlayerInterface] 舊面板已不存在")
