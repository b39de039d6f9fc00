import discord
from discord.ext import commands

from loguru import logger

import os
import sys
import traceback
from dotenv import load_dotenv

version = "v1.0"

# ─────────────────────────────────────────────────────────
#  初始化 Bot
# ─────────────────────────────────────────────────────────
# 斜線指令不需要 message_content；語音狀態事件用於偵測被踢出語音頻道
intents = discord.Intents.default()
intents.voice_states = True

bot = commands.Bot(
    command_prefix=commands.when_mentioned,
    intents=intents,
    help_command=None,
)

# ─────────────────────────────────────────────────────────
#  機器人啟動事件
# ─────────────────────────────────────────────────────────

@bot.event
async def on_ready():
    if bot.extensions:
        # 斷線重連時 on_ready 會再次觸發
        logger.info(f"[初始化] {bot.user} | 重新連線")
        return

    app_info = await bot.application_info()
    bot.owner_id = app_info.owner.id

    await load_all_extensions()

    logger.info("[初始化] 同步斜線指令")
    slash_command = await bot.tree.sync()
    logger.info(f"[初始化] 已同步 {len(slash_command)} 個斜線指令")
    logger.info(f"[初始化] {bot.user} | {version} | Ready!")


async def load_all_extensions():
    """自動載入 /cogs 資料夾中的所有 .py 模組"""
    cogs_dir = os.path.join(os.path.dirname(__file__), 'cogs')
    for filename in sorted(os.listdir(cogs_dir)):
        if filename.endswith('.py') and not filename.startswith('_'):
            try:
                logger.info(f"[初始化] 載入 Extension: {filename[:-3]}")
                await bot.load_extension(f'cogs.{filename[:-3]}')
            except commands.ExtensionError as exc:
                logger.error(f"[初始化] 載入 Extension 失敗: {exc}\n{traceback.format_exc()}")
    logger.info("[初始化] Extension 載入完畢")

# ─────────────────────────────────────────────────────────
#  錯誤處理：斜線指令錯誤回報給使用者與擁有者
# ─────────────────────────────────────────────────────────

@bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: discord.app_commands.AppCommandError):
    location = "私人 Private"
    if interaction.guild is not None:
        location = f"{interaction.guild.name} - {getattr(interaction.channel, 'name', '?')}"
    logger.error(
        f"{location}-{interaction.user.name}({interaction.user.id}):{error}\n"
        f"{''.join(traceback.format_exception(error))}"
    )

    notice = discord.Embed(title="❌ 指令執行失敗", description="發生未預期的錯誤，請稍後再試", color=discord.Color.red())
    try:
        if interaction.response.is_done():
            await interaction.followup.send(embed=notice, ephemeral=True)
        else:
            await interaction.response.send_message(embed=notice, ephemeral=True)
    except discord.HTTPException as e:
        logger.warning(f"無法回覆指令錯誤: {e}")

    maintainer = bot.get_user(bot.owner_id) if bot.owner_id else None
    if maintainer is None:
        return
    embed = discord.Embed(title="斜線指令錯誤", description=str(error))
    embed.set_author(name=f"{interaction.user.name} ({interaction.user.id})", icon_url=interaction.user.display_avatar.url)
    embed.add_field(name="指令資料", value=str(interaction.data)[:1024])
    embed.add_field(name="頻道", value=location)
    try:
        await maintainer.send(embed=embed)
    except discord.HTTPException as e:
        logger.warning(f"無法通知擁有者: {e}")

# ─────────────────────────────────────────────────────────
#  Loguru 記錄器設定
# ─────────────────────────────────────────────────────────

def set_logger():
    """設定 Loguru 的輸出行為（終端機 & 檔案）"""
    logger.remove()
    debug_mode = os.getenv('DEBUG', '').lower() in ('true', '1', 'yes')

    # 終端輸出
    logger.add(sys.stdout, level="DEBUG" if debug_mode else "INFO", colorize=True)

    # 檔案輸出（每 7 天輪替，保留 30 天，自動壓縮）
    logger.add(
        "./logs/system.log",
        rotation="7 days",
        retention="30 days",
        encoding="UTF-8",
        compression="zip",
        level="DEBUG" if debug_mode else "INFO",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
        enqueue=True,
    )

    # 播放管線的錯誤另外保留完整堆疊，方便追查 FFmpeg / yt-dlp 問題
    logger.add(
        "./logs/error.log",
        rotation="10 MB",
        retention=5,
        encoding="UTF-8",
        level="ERROR",
        backtrace=True,
        diagnose=False,
        enqueue=True,
    )

# ─────────────────────────────────────────────────────────
#  程式入口點
# ─────────────────────────────────────────────────────────

if __name__ == '__main__':
    load_dotenv()
    set_logger()

    TOKEN = os.getenv("DISCORD_BOT_TOKEN")
    if not TOKEN:
        logger.critical("❌ DISCORD_BOT_TOKEN 尚未設定，請檢查 .env 或系統環境變數")
        sys.exit(1)

    try:
        bot.run(TOKEN, log_handler=None)
    except discord.LoginFailure as e:
        logger.critical(f"❗ 無法啟動 Discord Bot：{e}")
