"""
B站音樂播放器 UI 層

提供 Discord 嵌入訊息、按鈕視圖與播放面板渲染
"""

from .embeds import EmbedBuilder
from .buttons import PlayerControlView, PaginationView, SearchSelectView
from .interface import PlayerInterface

__all__ = [
    "EmbedBuilder",
    "PlayerControlView",
    "PaginationView",
    "SearchSelectView",
    "PlayerInterface",
]
