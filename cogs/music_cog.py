"""
B站音樂播放器 Cog

每個伺服器各自一個播放器，提供:
- B站影片播放與佇列管理（單曲 / 清單 / 不循環）
- 關鍵字搜尋與「哈基米」自動歌單
- 播放面板按鈕與定時進度更新
"""

# -------------------- Discord --------------------
import discord
from discord.ext import commands, tasks
from discord import app_commands

# -------------------- Module --------------------
from module.bili_player import (
    # Core
    PlayerRegistry,
    StateBus,
    CommandResult,
    LoopMode,
    # Extractor
    BilibiliExtractor,
    BilibiliSearchClient,
    # FFmpeg
    FFmpegTranscoder,
    # UI
    EmbedBuilder,
    PlayerControlView,
    PaginationView,
    SearchSelectView,
    PlayerInterface,
    # Constants
    AUTOPLAY_COUNT,
    AUTOPLAY_KEYWORD,
    EMBED_UPDATE_INTERVAL,
    PLAYLIST_PER_PAGE,
)

# -------------------- Other --------------------
from typing import Optional
from loguru import logger


class BilibiliMusicCog(commands.Cog):
    """Discord B站音樂播放器 Cog"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

        # 核心組件
        self.bus = StateBus()
        self.transcoder = FFmpegTranscoder()
        self.extractor = BilibiliExtractor()
        self.search_client = BilibiliSearchClient(extractor=self.extractor)
        self.registry = PlayerRegistry(extractor=self.extractor, bus=self.bus, transcoder=self.transcoder)

        # UI 相關
        self.embeds = EmbedBuilder()
        self.interface = PlayerInterface(self.bus, button_callback=self._button_callback, embeds=self.embeds)

    async def cog_load(self):
        """Cog 載入時檢查外部工具並啟動面板"""
        if not self.transcoder.locate():
            logger.error("[BilibiliMusicCog] 找不到 FFmpeg，播放功能無法使用！")
        if not await self.extractor.is_available():
            logger.error("[BilibiliMusicCog] 找不到 yt-dlp，無法解析 B站影片！")

        self.interface.start()
        self.refresh_progress.start()
        logger.info("[BilibiliMusicCog] 初始化完成")

    async def cog_unload(self):
        """Cog 卸載時清理資源"""
        self.refresh_progress.cancel()
        await self.registry.cleanup()
        self.interface.close()
        logger.info("[BilibiliMusicCog] 已卸載，資源已清理")

    # ==================== 共用工具 ====================

    @staticmethod
    def _user_channel(interaction: discord.Interaction) -> Optional[discord.VoiceChannel]:
        voice = getattr(interaction.user, "voice", None)
        return voice.channel if voice else None

    def _check_same_channel(self, interaction: discord.Interaction) -> Optional[str]:
        """呼叫者必須和機器人在同一個語音頻道，回傳錯誤訊息或 None"""
        channel = self._user_channel(interaction)
        if channel is None:
            return "請先加入語音頻道再執行此指令"
        voice_client = interaction.guild.voice_client if interaction.guild else None
        if voice_client and voice_client.channel and voice_client.channel.id != channel.id:
            return f"請先加入機器人所在的語音頻道 {voice_client.channel.mention}"
        return None

    async def _reject(self, interaction: discord.Interaction, message: str, suggestion: str = None):
        await interaction.followup.send(embed=self.embeds.error(message, suggestion), ephemeral=True)

    async def _send_result(
        self,
        interaction: discord.Interaction,
        result: CommandResult,
        embed: Optional[discord.Embed] = None,
    ):
        """成功時送出 embed，失敗時送出錯誤與建議"""
        if not result.success:
            await self._reject(interaction, result.error, result.suggestion)
        elif embed is not None:
            await interaction.followup.send(embed=embed)

    async def _guarded(self, interaction: discord.Interaction) -> bool:
        """defer 之後做語音頻道檢查"""
        await interaction.response.defer()
        error = self._check_same_channel(interaction)
        if error:
            await self._reject(interaction, error)
            return False
        return True

    # ==================== 按鈕處理 ====================

    async def _button_callback(self, interaction: discord.Interaction, action: str):
        """
        處理播放面板按鈕（interaction 已由 View defer）
        """
        error = self._check_same_channel(interaction)
        if error:
            await self._reject(interaction, error)
            return

        guild_id = interaction.guild.id
        player = self.registry.get(guild_id)

        if action == PlayerControlView.ACTION_PLAY_PAUSE:
            if player and player.is_paused:
                result = await self.registry.resume(guild_id)
            elif player and player.is_playing:
                result = await self.registry.pause(guild_id)
            else:
                result = await self.registry.play_queued(guild_id)
        elif action == PlayerControlView.ACTION_NEXT:
            result = await self.registry.skip(guild_id)
        elif action == PlayerControlView.ACTION_PREVIOUS:
            result = await self.registry.previous(guild_id)
        elif action == PlayerControlView.ACTION_LOOP:
            result = await self.registry.cycle_loop_mode(guild_id)
        elif action == PlayerControlView.ACTION_SHUFFLE:
            result = await self.registry.shuffle(guild_id)
        elif action == PlayerControlView.ACTION_CLEAR:
            result = await self.registry.clear(guild_id)
        elif action == PlayerControlView.ACTION_STOP:
            result = await self.registry.stop(guild_id)
            if result.success:
                await self.interface.detach(guild_id, self._farewell())
        else:
            logger.warning(f"[BilibiliMusicCog] 未知的按鈕動作: {action}")
            return

        if not result.success:
            await self._reject(interaction, result.error, result.suggestion)

    def _farewell(self) -> discord.Embed:
        return discord.Embed(
            title="👋 播放器已關閉",
            description="感謝使用！使用 `/音樂-播放` 可以重新啟動",
            color=discord.Color.green()
        )

    # ==================== 播放 ====================

    @app_commands.command(name="音樂-播放", description="播放 B站影片，已有曲目時加入播放清單")
    @app_commands.rename(url="網址")
    @app_commands.describe(url="B站影片網址（支援 BV 號、av 號與 b23.tv 短網址）")
    async def play(self, interaction: discord.Interaction, url: str):
        if not await self._guarded(interaction):
            return
        await self._play_url(interaction, url)

    async def _play_url(self, interaction: discord.Interaction, url: str):
        guild_id = interaction.guild.id
        self.interface.bind(guild_id, interaction.channel)

        result = await self.registry.play(
            guild_id, url, self._user_channel(interaction), requested_by=interaction.user.id
        )
        if result.success:
            position = len(self.registry.get(guild_id).queue)
            embed = self.embeds.added_track(result.track, position=position, started=result.started)
            await interaction.followup.send(embed=embed)
        else:
            await self._reject(interaction, result.error, result.suggestion)

    @app_commands.command(name="音樂-暫停", description="暫停播放")
    async def pause(self, interaction: discord.Interaction):
        if not await self._guarded(interaction):
            return
        result = await self.registry.pause(interaction.guild.id)
        await self._send_result(interaction, result, self.embeds.success("已暫停"))

    @app_commands.command(name="音樂-繼續", description="繼續播放")
    async def resume(self, interaction: discord.Interaction):
        if not await self._guarded(interaction):
            return
        result = await self.registry.resume(interaction.guild.id)
        await self._send_result(interaction, result, self.embeds.success("繼續播放"))

    @app_commands.command(name="音樂-下一首", description="跳到下一首")
    async def skip(self, interaction: discord.Interaction):
        if not await self._guarded(interaction):
            return
        result = await self.registry.skip(interaction.guild.id)
        embed = self.embeds.success("下一首", result.track.title) if result.track else None
        await self._send_result(interaction, result, embed)

    @app_commands.command(name="音樂-上一首", description="回到上一首")
    async def previous(self, interaction: discord.Interaction):
        if not await self._guarded(interaction):
            return
        result = await self.registry.previous(interaction.guild.id)
        embed = self.embeds.success("上一首", result.track.title) if result.track else None
        await self._send_result(interaction, result, embed)

    @app_commands.command(name="音樂-停止", description="停止播放並離開語音頻道")
    async def stop(self, interaction: discord.Interaction):
        if not await self._guarded(interaction):
            return
        guild_id = interaction.guild.id
        result = await self.registry.stop(guild_id)
        if result.success:
            await self.interface.detach(guild_id, self._farewell())
        await self._send_result(interaction, result, self.embeds.success("已停止播放"))

    # ==================== 佇列 ====================

    @app_commands.command(name="音樂-循環", description="設定循環模式")
    @app_commands.rename(mode="模式")
    @app_commands.describe(mode="循環模式")
    @app_commands.choices(mode=[
        app_commands.Choice(name="關閉", value=LoopMode.NONE.value),
        app_commands.Choice(name="單曲循環", value=LoopMode.TRACK.value),
        app_commands.Choice(name="清單循環", value=LoopMode.QUEUE.value),
    ])
    async def loop(self, interaction: discord.Interaction, mode: app_commands.Choice[str]):
        if not await self._guarded(interaction):
            return
        result = await self.registry.set_loop_mode(interaction.guild.id, mode.value)
        embed = self.embeds.loop_mode_changed(result.state.loop_mode) if result.state else None
        await self._send_result(interaction, result, embed)

    @app_commands.command(name="音樂-清單", description="查看當前播放清單")
    async def queue(self, interaction: discord.Interaction):
        await interaction.response.defer()
        guild_id = interaction.guild.id
        if guild_id not in self.registry:
            await self._reject(interaction, "播放器尚未啟動", "使用 /音樂-播放 加入曲目")
            return

        page_data = self.registry.get_queue(guild_id, 1, PLAYLIST_PER_PAGE)
        current = {"page": 1}
        message: Optional[discord.Message] = None

        async def on_page(page_interaction: discord.Interaction, action: str):
            if action == PaginationView.ACTION_PREVIOUS_PAGE:
                current["page"] -= 1
            else:
                current["page"] += 1
            data = self.registry.get_queue(guild_id, current["page"], PLAYLIST_PER_PAGE)
            current["page"] = data["current_page"]
            view.update_page(data["current_page"], data["total_pages"])
            await page_interaction.edit_original_response(embed=self.embeds.queue_page(data), view=view)

        async def on_timeout():
            if message is not None:
                await message.edit(view=None)

        view = PaginationView(
            button_callback=on_page,
            timeout_callback=on_timeout,
            current_page=1,
            total_pages=page_data["total_pages"],
        )
        message = await interaction.followup.send(embed=self.embeds.queue_page(page_data), view=view, wait=True)

    @app_commands.command(name="音樂-移除", description="移除播放清單中的特定曲目")
    @app_commands.rename(index="曲目編號")
    @app_commands.describe(index="要移除的曲目編號（從 1 開始）")
    async def remove(self, interaction: discord.Interaction, index: int):
        if not await self._guarded(interaction):
            return
        result = await self.registry.remove_track(interaction.guild.id, index - 1)
        embed = self.embeds.removed_track(result.track) if result.track else None
        await self._send_result(interaction, result, embed)

    @app_commands.command(name="音樂-隨機", description="隨機排序播放清單（目前曲目移到最前面）")
    async def shuffle(self, interaction: discord.Interaction):
        if not await self._guarded(interaction):
            return
        result = await self.registry.shuffle(interaction.guild.id)
        await self._send_result(interaction, result, self.embeds.success("已隨機排序播放清單"))

    @app_commands.command(name="音樂-清空", description="清空播放清單（保留目前播放的曲目）")
    async def clear(self, interaction: discord.Interaction):
        if not await self._guarded(interaction):
            return
        result = await self.registry.clear(interaction.guild.id)
        await self._send_result(interaction, result, self.embeds.success("已清空播放清單"))

    # ==================== 搜尋 ====================

    @app_commands.command(name="音樂-搜尋", description="搜尋 B站影片並選擇播放")
    @app_commands.rename(keyword="關鍵字")
    @app_commands.describe(keyword="搜尋關鍵字")
    async def search(self, interaction: discord.Interaction, keyword: str):
        await interaction.response.defer()
        videos = await self.search_client.search(keyword, page_size=10)
        if not videos:
            await self._reject(interaction, f"找不到「{keyword}」的相關影片", "換個關鍵字再試一次")
            return

        message: Optional[discord.Message] = None

        async def on_select(select_interaction: discord.Interaction, video: dict):
            await select_interaction.response.defer()
            if message is not None:
                await message.edit(view=None)
            error = self._check_same_channel(select_interaction)
            if error:
                await self._reject(select_interaction, error)
                return
            await self._play_url(select_interaction, video["url"])

        async def on_timeout():
            if message is not None:
                await message.edit(view=None)

        view = SearchSelectView(
            videos,
            owner_id=interaction.user.id,
            select_callback=on_select,
            timeout_callback=on_timeout,
        )
        message = await interaction.followup.send(
            embed=self.embeds.search_results(keyword, view.videos), view=view, wait=True
        )

    @app_commands.command(name="音樂-哈基米", description="隨機精選一批哈基米影片作為播放清單")
    async def hachimi(self, interaction: discord.Interaction):
        if not await self._guarded(interaction):
            return
        guild_id = interaction.guild.id
        self.interface.bind(guild_id, interaction.channel)

        videos = await self.search_client.pick_candidates(AUTOPLAY_KEYWORD, guild_id=guild_id, count=AUTOPLAY_COUNT)
        if not videos:
            await self._reject(interaction, "目前找不到合適的影片", "稍後再試一次")
            return

        result = await self.registry.enqueue_tracks(
            guild_id, self._user_channel(interaction), videos, requested_by=interaction.user.id
        )
        await self._send_result(interaction, result, self.embeds.added_tracks(len(videos), AUTOPLAY_KEYWORD))

    @app_commands.command(name="音樂-顯示播放器", description="重新顯示播放器控制面板（將播放器移至最新訊息）")
    async def show_player(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        guild_id = interaction.guild.id
        if guild_id not in self.registry:
            await self._reject(interaction, "播放器尚未啟動", "使用 /音樂-播放 加入曲目")
            return
        self.interface.bind(guild_id, interaction.channel)
        await self.interface.repost(guild_id)
        self.registry.notify(guild_id)
        await interaction.followup.send("已重新顯示播放器", ephemeral=True)

    # ==================== 背景任務 ====================

    @tasks.loop(seconds=EMBED_UPDATE_INTERVAL)
    async def refresh_progress(self):
        """定期重新發布播放中的狀態，更新進度條"""
        for guild_id, player in self.registry.players.items():
            if player.is_playing and self.interface.context(guild_id) is not None:
                self.registry.notify(guild_id)

    @refresh_progress.before_loop
    async def before_refresh_progress(self):
        await self.bot.wait_until_ready()

    # ==================== 事件監聽 ====================

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """機器人被移出語音頻道時重置播放器"""
        if member.id != self.bot.user.id:
            return

        if before.channel is not None and after.channel is None:
            guild_id = member.guild.id
            if guild_id in self.registry:
                logger.warning(f"[BilibiliMusicCog] 伺服器 {guild_id} 語音連線被中斷")
                await self.registry.handle_voice_disconnect(guild_id)
                await self.interface.detach(guild_id, self.embeds.info("語音連線已中斷", "播放清單已清空"))


async def setup(bot: commands.Bot):
    """載入 Cog"""
    await bot.add_cog(BilibiliMusicCog(bot))
