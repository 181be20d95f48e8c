"""
猜歌遊戲 Cog

提供:
- Spotify 播放清單載入
- 多回合猜歌（選擇題 / 自由作答）
- 投票跳過與提示
- 排行榜與音源統計
"""

# -------------------- Discord --------------------
import discord
from discord.ext import commands
from discord import app_commands

# -------------------- Module --------------------
from module.track_quiz import (
    # Core
    GameConfig,
    GameMode,
    GameSession,
    GameSummary,
    RoundOrchestrator,
    RoundResult,
    RoundState,
    SessionRegistry,
    Track,
    AudioCache,
    Feedback,
    Verdict,
    GameEventSink,
    GuessEvent,
    SelectionEvent,
    SkipVoteEvent,
    HintRequest,
    # Audio
    AudioSourceResolver,
    DiscordVoiceHandle,
    DiscordVoiceTransport,
    StreamingConnectionManager,
    YTDLPStream,
    # Spotify
    SpotifyClient,
    PlaylistInfo,
    # Tools
    ToolLocator,
    # UI
    EmbedBuilder,
    AnswerView,
    # Utils
    QuizError,
    ConfigurationError,
    ResolutionTelemetry,
    # Constants
    DEFAULT_TOTAL_ROUNDS,
    LEADERBOARD_SIZE,
    OPTION_COUNT,
)
from module.track_quiz.core.events import (
    REJECT_ALREADY_RESOLVED,
    REJECT_INVALID_OPTION,
    REJECT_NOT_STARTED,
    REJECT_WRONG_MODE,
)

# -------------------- Other --------------------
import functools
import os
from typing import Any, Dict, List, Optional, Tuple
from loguru import logger


FEEDBACK_REACTIONS = {
    Feedback.HOT: "🔥",
    Feedback.WARM: "♨️",
    Feedback.COLD: "❄️",
}

FEEDBACK_TEXT = {
    Feedback.HOT: "🔥 很接近了！",
    Feedback.WARM: "♨️ 有點接近",
    Feedback.COLD: "❄️ 答錯了，再試試！",
}

REJECT_TEXT = {
    REJECT_NOT_STARTED: "音樂還沒開始播放，請稍候再作答",
    REJECT_ALREADY_RESOLVED: "這回合已經結束了",
    REJECT_WRONG_MODE: "目前模式不接受這種作答方式",
    REJECT_INVALID_OPTION: "無效的選項",
}


class DiscordEventSink(GameEventSink):
    """把遊戲事件呈現到文字頻道"""

    def __init__(self, channel: discord.abc.Messageable, embeds: EmbedBuilder, view_callback):
        self.channel = channel
        self.embeds = embeds
        self.view_callback = view_callback
        self.round_message: Optional[discord.Message] = None
        self.round_view: Optional[AnswerView] = None
        self.on_finished = None

    # === 回合 ===

    async def on_round_start(self, session: GameSession, round_state: RoundState) -> None:
        await self._close_round_view()
        self.round_view = AnswerView(
            answer_callback=self.view_callback,
            options=round_state.options or None,
            timeout=None,
        )
        embed = self.embeds.round_start(round_state, session.config.total_rounds)
        self.round_message = await self.channel.send(embed=embed, view=self.round_view)

    async def on_round_playing(self, session: GameSession, round_state: RoundState) -> None:
        if self.round_message is None:
            return
        embed = self.embeds.round_playing(round_state, session.config.total_rounds)
        await self.round_message.edit(embed=embed, view=self.round_view)

    async def on_round_result(self, session: GameSession, result: RoundResult) -> None:
        await self._close_round_view()
        await self.channel.send(embed=self.embeds.round_result(result))

    async def on_game_over(self, session: GameSession, summary: GameSummary) -> None:
        await self._close_round_view()
        await self.channel.send(embed=self.embeds.game_over(summary))
        if self.on_finished:
            self.on_finished(session.session_id, summary)

    # === 玩家回饋 ===

    async def on_feedback(self, session: GameSession, event: Any, verdict: Verdict) -> None:
        context = event.context
        if isinstance(context, discord.Message):
            await context.add_reaction(FEEDBACK_REACTIONS.get(verdict.feedback, "❄️"))
        else:
            await self._reply(context, FEEDBACK_TEXT.get(verdict.feedback, FEEDBACK_TEXT[Feedback.COLD]))

    async def on_hint(self, session: GameSession, event: HintRequest, hint: Optional[str], remaining: int) -> None:
        if hint is None:
            await self._reply(event.context, "💡 這回合的提示已經用完了")
            return
        await self.channel.send(f"💡 <@{event.user_id}> 要了提示：{hint}（剩餘 {remaining} 次）")
        await self._reply(event.context, "已送出提示")

    async def on_skip_vote(self, session: GameSession, event: SkipVoteEvent, votes: int, required: int) -> None:
        await self.channel.send(f"⏭️ <@{event.user_id}> 投票跳過（{votes}/{required}）")
        await self._reply(event.context, "已投票")

    async def on_answer_rejected(self, session: GameSession, event: Any, reason: str) -> None:
        # 文字訊息的拒絕不回覆，避免洗版
        if isinstance(event.context, discord.Message):
            logger.debug(f"[猜歌] 忽略訊息 {event.context.id}: {reason}")
            return
        await self._reply(event.context, REJECT_TEXT.get(reason, reason))

    # === 內部方法 ===

    async def _reply(self, context: Any, content: str) -> None:
        if isinstance(context, discord.Interaction):
            await context.followup.send(content, ephemeral=True)

    async def _close_round_view(self) -> None:
        view, message = self.round_view, self.round_message
        self.round_view = None
        self.round_message = None
        if view is None:
            return
        view.disable_all()
        view.stop()
        if message is not None:
            try:
                await message.edit(view=view)
            except discord.HTTPException as e:
                logger.warning(f"[猜歌] 無法停用作答元件: {e}")


class TrackQuizCog(commands.Cog):
    """Discord 猜歌遊戲 Cog"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

        # 外部工具
        self.locator = ToolLocator()
        self.ffmpeg_path: str | None = None
        self.ytdlp_path: str | None = None

        # 服務
        self.spotify: SpotifyClient | None = None
        self.telemetry = ResolutionTelemetry()
        self.registry = SessionRegistry()

        # 每個伺服器已載入的播放清單與上一場結果
        self.catalogs: Dict[int, Tuple[PlaylistInfo, List[Track]]] = {}
        self.last_summaries: Dict[int, GameSummary] = {}

        self.embed_builder = EmbedBuilder()

    async def cog_load(self):
        """Cog 載入時初始化"""
        self.ffmpeg_path = await self.locator.ensure("ffmpeg")
        self.ytdlp_path = await self.locator.ensure("yt-dlp")
        if not self.ffmpeg_path:
            logger.error("FFmpeg 初始化失敗，猜歌遊戲無法播放音樂！")

        try:
            self.spotify = SpotifyClient(
                client_id=os.getenv("SPOTIFY_CLIENT_ID", ""),
                client_secret=os.getenv("SPOTIFY_CLIENT_SECRET", ""),
            )
            await self.spotify.start()
        except ConfigurationError as e:
            logger.error(f"[TrackQuizCog] Spotify 設定錯誤: {e}")
            self.spotify = None

        logger.info("[TrackQuizCog] 初始化完成")

    async def cog_unload(self):
        """Cog 卸載時清理資源"""
        await self.registry.shutdown()
        if self.spotify:
            await self.spotify.close()
        logger.info("[TrackQuizCog] 已卸載，資源已清理")

    # ==================== 斜線指令 ====================

    @app_commands.command(name="猜歌-載入", description="載入 Spotify 播放清單作為題庫")
    @app_commands.rename(playlist="播放清單")
    @app_commands.describe(playlist="Spotify 播放清單網址、URI 或 ID")
    @app_commands.guild_only()
    async def load_playlist(self, interaction: discord.Interaction, playlist: str):
        """載入播放清單"""
        await interaction.response.defer()

        if not self.spotify:
            await interaction.followup.send(embed=self.embed_builder.error("尚未設定 Spotify 憑證"))
            return
        if self.registry.is_active(interaction.guild_id):
            await interaction.followup.send("遊戲進行中，請先使用 `/猜歌-停止`。", ephemeral=True)
            return

        message = await interaction.followup.send(embed=self.embed_builder.loading("正在讀取播放清單..."), wait=True)
        try:
            info = await self.spotify.validate_playlist(playlist)
            if not info.is_playable:
                await message.edit(
                    embed=self.embed_builder.error("無法使用此播放清單", "播放清單必須公開且至少有一首歌")
                )
                return

            tracks = await self.spotify.get_playlist_tracks(info.playlist_id)
            if not tracks:
                await message.edit(embed=self.embed_builder.error("播放清單中沒有適合猜歌的歌曲"))
                return

            self.catalogs[interaction.guild_id] = (info, tracks)
            embed = self.embed_builder.playlist_loaded(info, len(tracks))
            if len(tracks) < OPTION_COUNT:
                embed.add_field(name="⚠️ 注意", value=f"歌曲少於 {OPTION_COUNT} 首，選擇題會出現佔位選項", inline=False)
            await message.edit(embed=embed)

        except QuizError as e:
            await message.edit(embed=self.embed_builder.error(e.user_message))
        except Exception as e:
            logger.exception(f"載入播放清單時發生錯誤: {e}")
            await interaction.followup.send("載入播放清單時發生錯誤，請稍後再試。", ephemeral=True)

    @app_commands.command(name="猜歌-開始", description="在目前的語音頻道開始猜歌遊戲")
    @app_commands.rename(rounds="回合數", difficulty="難度", mode="模式", delay="播放延遲")
    @app_commands.describe(
        rounds="遊戲回合數",
        difficulty="作答時限：簡單 45 秒 / 普通 30 秒 / 困難 15 秒",
        mode="選擇題或自由作答",
        delay="每回合開始播放前的等待秒數",
    )
    @app_commands.choices(
        difficulty=[
            app_commands.Choice(name="簡單", value="easy"),
            app_commands.Choice(name="普通", value="medium"),
            app_commands.Choice(name="困難", value="hard"),
        ],
        mode=[
            app_commands.Choice(name="選擇題", value="multiple_choice"),
            app_commands.Choice(name="自由作答", value="open_answer"),
        ],
    )
    @app_commands.guild_only()
    async def start_game(
        self,
        interaction: discord.Interaction,
        rounds: int = DEFAULT_TOTAL_ROUNDS,
        difficulty: str = "medium",
        mode: str = "multiple_choice",
        delay: float = 0.0,
    ):
        """開始遊戲"""
        await interaction.response.defer()
        guild_id = interaction.guild_id

        # 檢查初始化狀態
        if not self.ffmpeg_path or not self.spotify:
            await interaction.followup.send("猜歌遊戲尚未初始化完成，請稍後再試。")
            return
        if guild_id not in self.catalogs:
            await interaction.followup.send("請先使用 `/猜歌-載入` 載入播放清單。")
            return
        if not interaction.user.voice or not interaction.user.voice.channel:
            await interaction.followup.send("請先加入語音頻道再執行此指令。")
            return
        if self.registry.is_active(guild_id):
            await interaction.followup.send("遊戲已經在進行中。", ephemeral=True)
            return

        try:
            config = GameConfig(
                difficulty=difficulty,
                mode=mode,
                total_rounds=rounds,
                playback_delay_sec=delay,
            )
        except QuizError as e:
            await interaction.followup.send(embed=self.embed_builder.error(e.user_message))
            return

        _, tracks = self.catalogs[guild_id]
        orchestrator = self._create_game(interaction, config, tracks)

        try:
            self.registry.register(orchestrator)
            await interaction.followup.send(embed=self.embed_builder.game_start(config, len(tracks)))
            await orchestrator.start()
        except Exception as e:
            self.registry.discard(guild_id)
            logger.exception(f"開始遊戲時發生錯誤: {e}")
            await interaction.followup.send("開始遊戲時發生錯誤，請稍後再試。", ephemeral=True)

    @app_commands.command(name="猜歌-停止", description="停止目前的猜歌遊戲")
    @app_commands.guild_only()
    async def stop_game(self, interaction: discord.Interaction):
        """停止遊戲"""
        orchestrator = self.registry.get(interaction.guild_id)
        if orchestrator is None:
            await interaction.response.send_message("目前沒有進行中的遊戲", ephemeral=True)
            return

        await interaction.response.defer()
        await orchestrator.stop(reason=f"stopped by {interaction.user.id}", user_id=interaction.user.id)
        self.registry.discard(interaction.guild_id)
        await interaction.followup.send(embed=self.embed_builder.success("遊戲已停止"))

    @app_commands.command(name="猜歌-跳過", description="投票跳過目前這首歌")
    @app_commands.guild_only()
    async def vote_skip(self, interaction: discord.Interaction):
        """投票跳過"""
        await self._submit_from_interaction(interaction, AnswerView.ACTION_SKIP, "")

    @app_commands.command(name="猜歌-提示", description="取得目前這首歌的提示")
    @app_commands.guild_only()
    async def request_hint(self, interaction: discord.Interaction):
        """取得提示"""
        await self._submit_from_interaction(interaction, AnswerView.ACTION_HINT, "")

    @app_commands.command(name="猜歌-排行", description="查看目前或上一場的排行榜")
    @app_commands.guild_only()
    async def leaderboard(self, interaction: discord.Interaction):
        """查看排行榜"""
        orchestrator = self.registry.get(interaction.guild_id)
        if orchestrator is not None:
            ranking = orchestrator.session.ranking(LEADERBOARD_SIZE)
            embed = self.embed_builder.leaderboard(ranking)
        elif interaction.guild_id in self.last_summaries:
            summary = self.last_summaries[interaction.guild_id]
            embed = self.embed_builder.leaderboard(summary.ranking, title="🏆 上一場排行")
        else:
            embed = self.embed_builder.info("還沒有任何遊戲紀錄")
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="猜歌-狀態", description="查看遊戲進度與音源統計")
    @app_commands.guild_only()
    async def status(self, interaction: discord.Interaction):
        """查看遊戲狀態"""
        orchestrator = self.registry.get(interaction.guild_id)
        if orchestrator is None:
            await interaction.response.send_message(
                embed=self.embed_builder.info("目前沒有進行中的遊戲"),
                ephemeral=True
            )
            return

        session = orchestrator.session
        round_text = (
            f"第 {session.round_index}/{session.config.total_rounds} 回合"
            f"（{orchestrator.phase.value}，連線 {session.connections.state.value}）"
        )
        embed = self.embed_builder.status(session.cache.stats(), self.telemetry.snapshot(), round_text)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # ==================== 作答處理 ====================

    async def _view_callback(self, interaction: discord.Interaction, action: str, value: str):
        """處理作答元件互動"""
        await self._submit_from_interaction(interaction, action, value)

    async def _submit_from_interaction(self, interaction: discord.Interaction, action: str, value: str):
        """
        把互動轉成遊戲事件

        Args:
            interaction: Discord 互動
            action: AnswerView 動作
            value: 選項值（僅選擇題）
        """
        orchestrator = self.registry.get(interaction.guild_id)
        if orchestrator is None:
            await interaction.response.send_message("目前沒有進行中的遊戲", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        user_id = interaction.user.id

        match action:
            case AnswerView.ACTION_SELECT:
                event = SelectionEvent(user_id=user_id, value=value, context=interaction)
            case AnswerView.ACTION_SKIP:
                eligible = self._eligible_voters(orchestrator.session)
                event = SkipVoteEvent(user_id=user_id, eligible_voters=eligible, context=interaction)
            case AnswerView.ACTION_HINT:
                event = HintRequest(user_id=user_id, context=interaction)
            case _:
                logger.warning(f"[猜歌] 未知動作: {action}")
                return

        if not orchestrator.submit(event):
            await interaction.followup.send("遊戲已經結束了", ephemeral=True)

    # ==================== 事件監聽 ====================

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        """自由作答：遊戲頻道中的文字訊息視為猜測"""
        if message.author.bot or message.guild is None or not message.content:
            return

        orchestrator = self.registry.get(message.guild.id)
        if orchestrator is None:
            return
        session = orchestrator.session
        if session.text_channel is None or message.channel.id != session.text_channel.id:
            return
        if session.config.mode != GameMode.OPEN_ANSWER:
            return

        orchestrator.submit(GuessEvent(user_id=message.author.id, text=message.content, context=message))

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """把 Bot 自己的語音狀態轉送給連線管理器"""
        if member.id != self.bot.user.id:
            return

        orchestrator = self.registry.get(member.guild.id)
        if orchestrator is None:
            return

        handle = orchestrator.session.connections.handle
        if isinstance(handle, DiscordVoiceHandle):
            if before.channel is not None and after.channel is None:
                logger.warning(f"[猜歌] {member.guild.name} 語音連線中斷")
            handle.notify_voice_state(after.channel)

    # ==================== 工具方法 ====================

    def _create_game(
        self,
        interaction: discord.Interaction,
        config: GameConfig,
        tracks: List[Track],
    ) -> RoundOrchestrator:
        """組裝一場遊戲所需的元件"""
        transport = DiscordVoiceTransport(ffmpeg_path=self.ffmpeg_path)
        session = GameSession(
            session_id=interaction.guild_id,
            config=config,
            tracks=list(tracks),
            connections=StreamingConnectionManager(transport),
            cache=AudioCache(),
            text_channel=interaction.channel,
            voice_channel=interaction.user.voice.channel,
            host_id=interaction.user.id,
        )
        resolver = AudioSourceResolver(
            metadata=self.spotify,
            cache=session.cache,
            telemetry=self.telemetry,
            stream_factory=functools.partial(YTDLPStream, executable=self.ytdlp_path or "yt-dlp"),
        )
        sink = DiscordEventSink(interaction.channel, self.embed_builder, self._view_callback)
        sink.on_finished = self._on_game_finished
        return RoundOrchestrator(session, resolver, sink)

    def _on_game_finished(self, session_id: int, summary: GameSummary):
        self.last_summaries[session_id] = summary

    @staticmethod
    def _eligible_voters(session: GameSession) -> int:
        """語音頻道中的真人數量"""
        channel = session.voice_channel
        if channel is None:
            return 1
        return len([m for m in channel.members if not m.bot])


async def setup(bot: commands.Bot):
    """載入 Cog"""
    await bot.add_cog(TrackQuizCog(bot))
