"""Tests for Discord embed rendering."""

from module.track_quiz.core.models import (
    GameMode,
    GameSummary,
    RoundOutcome,
    RoundResult,
    RoundState,
    Track,
)
from module.track_quiz.ui.embeds import EmbedBuilder

TRACK = Track("Yellow", "Coldplay", image_url="https://img/yellow")


def test_round_result_always_reveals_answer():
    embeds = EmbedBuilder()
    result = RoundResult(1, 5, TRACK, RoundOutcome.TIMEOUT, tier="secondary")

    embed = embeds.round_result(result)

    assert "Yellow" in embed.description
    assert embed.title == "⏰ 時間到！"
    assert embed.footer.text == "第 1/5 回合 | 音源：完整串流"
    assert embed.fields == []


def test_round_result_shows_winner_and_points():
    embeds = EmbedBuilder()
    result = RoundResult(2, 5, TRACK, RoundOutcome.CORRECT, winner_id=7, points=4, elapsed_ms=3200)

    embed = embeds.round_result(result)

    assert embed.color == EmbedBuilder.COLOR_SUCCESS
    assert embed.fields[0].value == "<@7> +4 分（3.2 秒）"


def test_round_playing_replaces_status_field():
    embeds = EmbedBuilder()
    round_state = RoundState(index=3, track=TRACK, time_limit_ms=15_000, mode=GameMode.OPEN_ANSWER)

    embed = embeds.round_playing(round_state, 10)

    assert embed.title == "🎧 第 3/10 回合"
    assert len(embed.fields) == 1
    assert embed.fields[0].value == "▶️ 播放中，限時 15 秒"


def test_game_over_without_scores():
    embeds = EmbedBuilder()
    summary = GameSummary(rounds_played=3, total_rounds=3, scores={}, ranking=[])

    embed = embeds.game_over(summary)

    assert embed.description == "這場沒有人得分 😢"
    assert embed.fields[0].value == "（無）"


def test_leaderboard_lines_use_medals_then_numbers():
    ranking = [(1, 9), (2, 7), (3, 5), (4, 3), (5, 2), (6, 1)]

    lines = EmbedBuilder().leaderboard(ranking).description.splitlines()

    assert lines[0] == "🥇 <@1> - 9 分"
    assert lines[-1] == "6. <@6> - 1 分"
