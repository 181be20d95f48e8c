"""
Discord Embed 生成器

負責生成各種情境的 Embed 訊息：
- 播放清單載入
- 回合開始 / 播放中 / 回合結果
- 遊戲結算
- 錯誤訊息
"""

import discord
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING
from loguru import logger

from ..core.models import GameMode, RoundOutcome

if TYPE_CHECKING:
    from ..core.models import GameConfig, GameSummary, RoundResult, RoundState, Track
    from ..spotify.client import PlaylistInfo


MEDALS = ["🥇", "🥈", "🥉", "4️⃣", "5️⃣"]

OUTCOME_TITLES = {
    RoundOutcome.CORRECT: "🎉 答對了！",
    RoundOutcome.TIMEOUT: "⏰ 時間到！",
    RoundOutcome.SKIPPED: "⏭️ 已跳過",
    RoundOutcome.FAILED: "⚠️ 無法播放",
    RoundOutcome.STOPPED: "⏹️ 遊戲已停止",
}

TIER_LABELS = {
    "preview": "官方試聽",
    "search": "搜尋試聽",
    "secondary": "完整串流",
}


class EmbedBuilder:
    """
    Discord Embed 管理器

    使用方式：
        embeds = EmbedBuilder()
        embed = embeds.round_start(round_state, total_rounds=10)
    """

    # 顏色定義
    COLOR_PLAYING = discord.Color.blurple()
    COLOR_SUCCESS = discord.Color.green()
    COLOR_WARNING = discord.Color.orange()
    COLOR_ERROR = discord.Color.red()
    COLOR_INFO = discord.Color.blue()
    COLOR_GOLD = discord.Color.gold()

    # === 播放清單 ===

    def playlist_loaded(self, info: "PlaylistInfo", track_count: int) -> discord.Embed:
        embed = discord.Embed(
            title="✅ 已載入播放清單",
            description=f"**{info.name}**",
            color=self.COLOR_SUCCESS
        )
        if info.owner:
            embed.set_author(name=info.owner)
        embed.add_field(name="可用歌曲", value=f"{track_count} 首", inline=True)
        embed.add_field(name="清單總數", value=f"{info.track_count} 首", inline=True)
        embed.set_footer(text="使用 /猜歌-開始 開始遊戲")
        return embed

    # === 回合 ===

    def game_start(self, config: "GameConfig", track_count: int) -> discord.Embed:
        mode = "選擇題" if config.mode == GameMode.MULTIPLE_CHOICE else "自由作答"
        embed = discord.Embed(
            title="🎵 猜歌遊戲開始！",
            description="準備好你的耳朵，第一首歌即將播放...",
            color=self.COLOR_PLAYING
        )
        embed.add_field(name="回合數", value=str(config.total_rounds), inline=True)
        embed.add_field(name="模式", value=mode, inline=True)
        embed.add_field(name="難度", value=f"{config.difficulty.value}（{config.time_limit_ms // 1000} 秒）", inline=True)
        embed.set_footer(text=f"曲庫共 {track_count} 首")
        return embed

    def round_start(self, round_state: "RoundState", total_rounds: int) -> discord.Embed:
        """回合開始（音源準備中）"""
        embed = discord.Embed(
            title=f"🎧 第 {round_state.index}/{total_rounds} 回合",
            color=self.COLOR_PLAYING
        )
        if round_state.mode == GameMode.MULTIPLE_CHOICE:
            embed.description = "\n".join(option.label for option in round_state.options)
            embed.set_footer(text="從下拉選單選出正確答案")
        else:
            embed.description = "直接在頻道輸入歌名或歌手！"
            embed.set_footer(text="使用 /猜歌-提示 取得提示")
        embed.add_field(name="狀態", value="⏳ 音源準備中...", inline=False)
        return embed

    def round_playing(self, round_state: "RoundState", total_rounds: int) -> discord.Embed:
        """音樂已開始播放"""
        embed = self.round_start(round_state, total_rounds)
        seconds = round_state.time_limit_ms // 1000
        embed.set_field_at(0, name="狀態", value=f"▶️ 播放中，限時 {seconds} 秒", inline=False)
        return embed

    def round_result(self, result: "RoundResult") -> discord.Embed:
        """回合結果（必定顯示歌名）"""
        try:
            color = self.COLOR_SUCCESS if result.outcome == RoundOutcome.CORRECT else self.COLOR_WARNING
            if result.outcome == RoundOutcome.FAILED:
                color = self.COLOR_ERROR

            embed = discord.Embed(
                title=OUTCOME_TITLES.get(result.outcome, "回合結束"),
                description=f"答案是 **{result.track.title}** - {result.track.artist}",
                color=color
            )
            if result.winner_id is not None:
                embed.add_field(
                    name="答對者",
                    value=f"<@{result.winner_id}> +{result.points} 分（{result.elapsed_ms / 1000:.1f} 秒）",
                    inline=False
                )
            if result.error:
                embed.add_field(name="原因", value=result.error, inline=False)
            if result.track.image_url:
                embed.set_thumbnail(url=result.track.image_url)

            footer = f"第 {result.round_index}/{result.total_rounds} 回合"
            if result.tier:
                footer += f" | 音源：{TIER_LABELS.get(result.tier, result.tier)}"
            embed.set_footer(text=footer)
            return embed

        except Exception as e:
            logger.error(f"生成回合結果 Embed 失敗: {e}")
            return self.error("無法顯示回合結果")

    # === 結算 ===

    def game_over(self, summary: "GameSummary") -> discord.Embed:
        """遊戲結算與排行榜"""
        embed = discord.Embed(
            title="🏁 遊戲結束！",
            color=self.COLOR_GOLD
        )
        if summary.winner is not None:
            embed.description = f"🏆 冠軍：<@{summary.winner[0]}>（{summary.winner[1]} 分）"
        else:
            embed.description = "這場沒有人得分 😢"

        embed.add_field(name="排行榜", value=self._leaderboard_lines(summary.ranking), inline=False)
        if summary.error:
            embed.add_field(name="提前結束", value=summary.error, inline=False)
        embed.set_footer(text=f"共進行 {summary.rounds_played}/{summary.total_rounds} 回合")
        return embed

    def leaderboard(self, ranking: List[Tuple[int, int]], title: str = "🏆 目前排行") -> discord.Embed:
        return discord.Embed(
            title=title,
            description=self._leaderboard_lines(ranking),
            color=self.COLOR_GOLD
        )

    def status(self, cache_stats: Dict[str, float], telemetry: dict, round_text: str) -> discord.Embed:
        """遊戲與音源統計"""
        embed = discord.Embed(title="📊 猜歌狀態", color=self.COLOR_INFO)
        embed.add_field(name="回合", value=round_text, inline=False)
        embed.add_field(
            name="快取",
            value=f"{cache_stats['size']}/{cache_stats['capacity']}，命中率 {cache_stats['hit_ratio'] * 100:.0f}%",
            inline=True
        )
        success = telemetry.get("success", {})
        lines = [f"{TIER_LABELS.get(tier, tier)}: {count}" for tier, count in success.items()] or ["（尚無資料）"]
        lines.append(f"全部失敗: {telemetry.get('exhausted', 0)}")
        embed.add_field(name="音源來源", value="\n".join(lines), inline=True)
        return embed

    # === 通用訊息 ===

    def success(self, message: str, description: Optional[str] = None) -> discord.Embed:
        """成功訊息"""
        return discord.Embed(title=f"✅ {message}", description=description, color=self.COLOR_SUCCESS)

    def error(self, message: str, description: Optional[str] = None) -> discord.Embed:
        """錯誤訊息"""
        return discord.Embed(title=f"❌ {message}", description=description, color=self.COLOR_ERROR)

    def info(self, message: str, description: Optional[str] = None) -> discord.Embed:
        """資訊訊息"""
        return discord.Embed(title=f"ℹ️ {message}", description=description, color=self.COLOR_INFO)

    def loading(self, message: str = "處理中...") -> discord.Embed:
        """載入中訊息"""
        return discord.Embed(title=f"⏳ {message}", color=self.COLOR_INFO)

    # === 內部方法 ===

    @staticmethod
    def _leaderboard_lines(ranking: List[Tuple[int, int]]) -> str:
        if not ranking:
            return "（無）"
        return "\n".join(
            f"{MEDALS[i] if i < len(MEDALS) else f'{i + 1}.'} <@{user_id}> - {points} 分"
            for i, (user_id, points) in enumerate(ranking)
        )
