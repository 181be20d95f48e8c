"""
猜歌回合互動元件 - UI 層

AnswerView 包含：
- 選項下拉選單（僅選擇題模式）
- 跳過投票按鈕
- 提示按鈕
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Callable, Awaitable, Any, List
from discord.ui import View, Button, Select
from discord import ButtonStyle, Interaction, SelectOption
from loguru import logger

if TYPE_CHECKING:
    from ..core.models import AnswerOption

# 互動動作類型
type AnswerAction = str
type AnswerCallback = Callable[[Interaction, AnswerAction, str], Awaitable[Any]]


class AnswerView(View):
    """
    回合作答視圖

    所有互動都轉交給 answer_callback(interaction, action, value)，
    由 Cog 轉成事件送進遊戲佇列。
    """

    # custom_id 常數
    ACTION_SELECT = "quiz_select"
    ACTION_SKIP = "quiz_skip"
    ACTION_HINT = "quiz_hint"

    def __init__(
        self,
        *,
        answer_callback: AnswerCallback | None = None,
        options: List["AnswerOption"] | None = None,
        timeout: float | None = None,
    ):
        """
        初始化作答視圖

        Args:
            answer_callback: 互動回調，接收 (interaction, action, value)
            options: 選擇題選項（自由作答模式為 None）
            timeout: 視圖逾時秒數，通常為回合時限
        """
        super().__init__(timeout=timeout)
        self.answer_callback = answer_callback

        if options:
            self.select = Select(
                placeholder="選擇你的答案...",
                custom_id=self.ACTION_SELECT,
                options=[SelectOption(label=option.label, value=option.value) for option in options],
                row=0,
            )
            self.select.callback = self._handle_select
            self.add_item(self.select)

        self.skip_button = Button(
            label="投票跳過",
            emoji="⏭️",
            style=ButtonStyle.secondary,
            custom_id=self.ACTION_SKIP,
            row=1,
        )
        self.skip_button.callback = self._handle_button
        self.add_item(self.skip_button)

        self.hint_button = Button(
            label="提示",
            emoji="💡",
            style=ButtonStyle.primary,
            custom_id=self.ACTION_HINT,
            row=1,
        )
        self.hint_button.callback = self._handle_button
        self.add_item(self.hint_button)

    async def _handle_select(self, interaction: Interaction) -> None:
        values = interaction.data.get("values") if interaction.data else None
        if not values:
            logger.error("[AnswerView] 無法取得選擇的選項")
            return
        await self._dispatch(interaction, self.ACTION_SELECT, values[0])

    async def _handle_button(self, interaction: Interaction) -> None:
        action = interaction.data.get("custom_id") if interaction.data else None
        if not action:
            logger.error("[AnswerView] 無法取得按鈕 custom_id")
            return
        await self._dispatch(interaction, action, "")

    async def _dispatch(self, interaction: Interaction, action: AnswerAction, value: str) -> None:
        logger.debug(f"[AnswerView] {interaction.user.id}: {action} {value}")
        if self.answer_callback:
            try:
                await self.answer_callback(interaction, action, value)
            except Exception as e:
                logger.exception(f"[AnswerView] 回調執行失敗: {action}, {e}")
        else:
            logger.warning("[AnswerView] 未設置 answer_callback")

    def disable_all(self) -> None:
        """回合結束後禁用所有元件"""
        for child in self.children:
            child.disabled = True
