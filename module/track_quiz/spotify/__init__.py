"""
Spotify 存取層

提供權杖管理與 Web API 客戶端
"""

from .token import TokenManager
from .client import SpotifyClient, PlaylistInfo, parse_playlist_id

__all__ = [
    "TokenManager",
    "SpotifyClient",
    "PlaylistInfo",
    "parse_playlist_id",
]
