"""
猜歌遊戲常數設定

所有時間單位除特別標註外皆為秒。
"""

# === 遊戲 ===
TIME_LIMIT_MS = {
    "easy": 45_000,
    "medium": 30_000,
    "hard": 15_000,
}
DEFAULT_TOTAL_ROUNDS = 10
MAX_TOTAL_ROUNDS = 50
MAX_PLAYBACK_DELAY = 10
MAX_HINTS = 2
OPTION_COUNT = 4
OPTION_LETTERS = "ABCD"
GAME_START_DELAY = 2
BETWEEN_ROUNDS_DELAY = 3
LEADERBOARD_SIZE = 5

# === 答案判定 ===
ACCEPT_THRESHOLD = 0.7
HOT_THRESHOLD = 0.6
WARM_THRESHOLD = 0.4
CONTAINMENT_SIMILARITY = 0.8

# === 快取 ===
AUDIO_CACHE_CAPACITY = 50
AUDIO_CACHE_TTL = 30 * 60
AUDIO_CACHE_SWEEP_INTERVAL = 5 * 60

# === 音源解析 ===
PREVIEW_FETCH_TIMEOUT = 15
SEARCH_RESULT_LIMIT = 5
SEARCH_MAX_ATTEMPTS = 3
SEARCH_BASE_DELAY = 1.0
SECONDARY_START_TIMEOUT = 25
SECONDARY_MAX_ATTEMPTS = 3
SECONDARY_RETRY_DELAY = 3.0
SECONDARY_BUFFER_THRESHOLD = 128 * 1024
SECONDARY_KILL_GRACE = 3
SECONDARY_CHUNK_SIZE = 64 * 1024
YTDLP_FORMAT = "bestaudio[ext=webm]/bestaudio[ext=m4a]/bestaudio[filesize<25M]"

# === 語音連線 ===
VOICE_READY_TIMEOUT = 20
VOICE_GRACE_WINDOW = 5
VOICE_CONNECT_ATTEMPTS = 3
VOICE_CONNECT_RETRY_DELAY = 3.0
PLAYBACK_VOLUME = 0.5

# === Spotify ===
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE = "https://api.spotify.com/v1"
TOKEN_SAFETY_MARGIN = 60
TOKEN_REFRESH_AHEAD = 5 * 60
TOKEN_MAX_ATTEMPTS = 5
TOKEN_MAX_BACKOFF = 5 * 60
PLAYLIST_PAGE_SIZE = 50
PLAYLIST_MAX_TRACKS = 2000
MIN_TRACK_DURATION_MS = 30_000
