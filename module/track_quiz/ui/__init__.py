"""
猜歌遊戲 UI 層

提供 Discord 嵌入訊息和作答視圖
"""

from .embeds import EmbedBuilder
from .views import AnswerView

__all__ = [
    "EmbedBuilder",
    "AnswerView",
]
