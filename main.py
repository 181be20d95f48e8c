import discord
from discord.ext import commands

from loguru import logger
from datetime import datetime

import os
import sys
import traceback
from dotenv import load_dotenv

version = "v1.0"
start_time = datetime.now()

# ─────────────────────────────────────────────────────────
#  初始化 Bot
# ─────────────────────────────────────────────────────────
# Intents 設定：https://discord.com/developers/applications → Bot → Privileged Gateway Intents
intents = discord.Intents.default()
intents.members = True          # 統計語音頻道中的玩家（投票跳過）
intents.message_content = True  # 自由作答模式需要讀取訊息內容
intents.voice_states = True     # 偵測語音斷線

bot = commands.Bot(
    command_prefix=commands.when_mentioned,
    intents=intents
)

# ─────────────────────────────────────────────────────────
#  自訂 HelpCommand
# ─────────────────────────────────────────────────────────

class QuizHelpCommand(commands.HelpCommand):
    async def send_bot_help(self, mapping):
        embed = discord.Embed(title="🎵 猜歌機器人", description="以斜線指令遊玩，流程如下", color=discord.Color.blue())
        embed.add_field(
            name="開始遊戲",
            value="1. `/猜歌-載入` 載入 Spotify 播放清單\n2. 加入語音頻道\n3. `/猜歌-開始` 選擇回合數、難度與模式",
            inline=False
        )
        embed.add_field(
            name="遊戲中",
            value="`/猜歌-提示`、`/猜歌-跳過`、`/猜歌-排行`、`/猜歌-狀態`、`/猜歌-停止`",
            inline=False
        )
        slash_commands = [cmd.name for cmd in self.context.bot.tree.get_commands()]
        embed.set_footer(text=f"共 {len(slash_commands)} 個斜線指令 | 版本 {version}")
        embed.set_author(name=self.context.me.name, icon_url=self.context.me.display_avatar.url)
        await self.get_destination().send(embed=embed)

    async def send_error_message(self, error):
        embed = discord.Embed(title="🚫 Help 指令錯誤", description=error, color=discord.Color.red())
        await self.get_destination().send(embed=embed)

bot.help_command = QuizHelpCommand()

# ─────────────────────────────────────────────────────────
#  機器人啟動事件
# ─────────────────────────────────────────────────────────

@bot.event
async def on_ready():
    app_info = await bot.application_info()
    bot.owner_id = app_info.owner.id

    await load_all_extensions()

    logger.info("[初始化] 同步斜線指令")
    slash_command = await bot.tree.sync()
    logger.info(f"[初始化] 已同步 {len(slash_command)} 個斜線指令")

    activity = discord.Game(name="猜歌 | /猜歌-開始")
    await bot.change_presence(activity=activity)

    logger.info(f"[初始化] {bot.user} | Ready! 啟動於 {start_time:%Y-%m-%d %H:%M:%S}")


async def load_all_extensions():
    """自動載入 /cogs 資料夾中尚未載入的 .py 模組（on_ready 可能觸發多次）"""
    cogs_dir = os.path.join(os.path.dirname(__file__), 'cogs')
    for filename in sorted(os.listdir(cogs_dir)):
        if not filename.endswith('.py'):
            continue
        extension = f'cogs.{filename[:-3]}'
        if extension in bot.extensions:
            continue
        try:
            logger.info(f"[初始化] 載入 Extension: {filename[:-3]}")
            await bot.load_extension(extension)
        except Exception as exc:
            logger.error(f"[初始化] 載入 Extension 失敗: {exc}\n{traceback.format_exc()}")
    logger.info("[初始化] Extension 載入完畢")

# ─────────────────────────────────────────────────────────
#  錯誤處理：斜線指令錯誤回報給擁有者
# ─────────────────────────────────────────────────────────

@bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: discord.app_commands.AppCommandError):
    location = f"{interaction.guild.name}/{interaction.channel}" if interaction.guild else "私人 Private"
    logger.error(f"[指令錯誤] {location}/{interaction.user.name}({interaction.user.id}): {error}\n{traceback.format_exc()}")

    # 通知使用者
    try:
        if interaction.response.is_done():
            await interaction.followup.send("執行指令時發生錯誤，請稍後再試。", ephemeral=True)
        else:
            await interaction.response.send_message("執行指令時發生錯誤，請稍後再試。", ephemeral=True)
    except discord.HTTPException as e:
        logger.warning(f"[指令錯誤] 無法回覆使用者: {e}")

    # 通知擁有者
    maintainer = bot.get_user(bot.owner_id) if bot.owner_id else None
    if maintainer is None:
        return
    embed = discord.Embed(title="斜線指令錯誤", description=str(error), color=discord.Color.red())
    embed.set_author(name=f"{interaction.user.name} ({interaction.user.id})", icon_url=interaction.user.display_avatar.url)
    embed.add_field(name="指令資料", value=str(interaction.data)[:1024])
    embed.add_field(name="頻道", value=location)
    await maintainer.send(embed=embed)

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
        level="INFO",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"
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

    if not os.getenv("SPOTIFY_CLIENT_ID") or not os.getenv("SPOTIFY_CLIENT_SECRET"):
        logger.warning("⚠️ SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET 尚未設定，將無法載入播放清單")

    try:
        bot.run(TOKEN, log_handler=None)
    except Exception as e:
        logger.critical(f"❗ 無法啟動 Discord Bot：{e}")
        sys.exit(1)
