"""
yt-dlp 串流子進程

以 `yt-dlp "ytsearch1:<query>" -o -` 搜尋並把音訊輸出到 stdout：
- stdout 持續寫入 PipeBuffer，供 discord.py 的音訊執行緒讀取
- 緩衝達門檻（或進程成功結束且有資料）才算啟動成功
- close() 保證終止進程：SIGTERM → 等待寬限期 → SIGKILL
- 任何失敗、逾時、取消都會走 close()
"""

import asyncio
import re
import threading
from typing import Dict, List, Optional
from loguru import logger

from ..constants import (
    SECONDARY_BUFFER_THRESHOLD,
    SECONDARY_CHUNK_SIZE,
    SECONDARY_KILL_GRACE,
    SECONDARY_START_TIMEOUT,
    YTDLP_FORMAT,
)
from ..core.models import Track
from ..utils.errors import ProviderUnavailable

_BRACKETED = re.compile(r"\([^)]*\)|\[[^\]]*\]")
_ARTIST_SPLIT = re.compile(r",|&|\bfeat\.?|\bft\.", re.IGNORECASE)
_NON_WORD = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


def build_search_query(track: Track) -> str:
    """
    組合次要來源的搜尋字串

    去除歌名中的括號內容，只取第一位歌手，標點替換為空白。
        "Blinding Lights (Remix)" / "The Weeknd, Rosalía" → "Blinding Lights The Weeknd"
    """
    title = _BRACKETED.sub(" ", track.title)
    artist = _ARTIST_SPLIT.split(track.artist, maxsplit=1)[0]
    query = _NON_WORD.sub(" ", f"{title} {artist}")
    return _SPACES.sub(" ", query).strip()


class PipeBuffer:
    """
    執行緒安全的位元組緩衝

    事件循環端 write()，discord.py 音訊執行緒端 read()（阻塞直到有資料或 EOF）。
    """

    def __init__(self):
        self._data = bytearray()
        self._cond = threading.Condition()
        self._eof = False
        self._closed = False
        self.total_written = 0

    def write(self, chunk: bytes) -> None:
        with self._cond:
            if self._closed:
                return
            self._data.extend(chunk)
            self.total_written += len(chunk)
            self._cond.notify_all()

    def finish(self) -> None:
        """寫入端結束，讀取端讀完後得到 EOF"""
        with self._cond:
            self._eof = True
            self._cond.notify_all()

    def read(self, size: int = -1) -> bytes:
        with self._cond:
            while not self._data and not self._eof and not self._closed:
                self._cond.wait()
            if self._closed:
                return b""
            if size is None or size < 0:
                size = len(self._data)
            chunk = bytes(self._data[:size])
            del self._data[:size]
            return chunk

    def close(self) -> None:
        """丟棄剩餘資料，喚醒所有讀取端"""
        with self._cond:
            self._closed = True
            self._data.clear()
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed


class YTDLPStream:
    """
    yt-dlp 串流（可作為 async context manager）

    使用方式：
        async with YTDLPStream("Blinding Lights The Weeknd") as stream:
            voice_client.play(FFmpegOpusAudio(stream.buffer, pipe=True))
            ...
        # 離開區塊後進程一定已結束
    """

    # 錯誤模式對應表
    ERROR_PATTERNS: Dict[str, List[str]] = {
        "age_restricted": [
            "sign in to confirm your age",
            "age-restricted",
        ],
        "copyright": [
            "copyright grounds",
            "has blocked",
        ],
        "region_blocked": [
            "not available in your country",
        ],
        "unavailable": [
            "video unavailable",
            "no longer available",
            "has been removed",
        ],
        "too_large": [
            "file is larger than max-filesize",
        ],
    }

    def __init__(
        self,
        query: str,
        executable: str = "yt-dlp",
        buffer_threshold: int = SECONDARY_BUFFER_THRESHOLD,
        start_timeout: float = SECONDARY_START_TIMEOUT,
        kill_grace: float = SECONDARY_KILL_GRACE,
        argv: Optional[List[str]] = None,
    ):
        """
        Args:
            query: 搜尋字串
            executable: yt-dlp 執行檔
            buffer_threshold: 開始播放前需緩衝的位元組數
            start_timeout: 等待緩衝的逾時（秒）
            kill_grace: SIGTERM 後等待多久才 SIGKILL（秒）
            argv: 完整指令（覆寫預設參數）
        """
        self.query = query
        self.executable = executable
        self.buffer_threshold = buffer_threshold
        self.start_timeout = start_timeout
        self.kill_grace = kill_grace
        self._argv = argv

        self.buffer = PipeBuffer()
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._stderr_lines: List[str] = []
        self._closed = False

    @property
    def args(self) -> List[str]:
        if self._argv:
            return list(self._argv)
        return [
            self.executable,
            f"ytsearch1:{self.query}",
            "-f", YTDLP_FORMAT,
            "--no-playlist",
            "--no-warnings",
            "--quiet",
            "--buffer-size", "64K",
            "--http-chunk-size", "1M",
            "--socket-timeout", "15",
            "--retries", "2",
            "--fragment-retries", "2",
            "--skip-unavailable-fragments",
            "--abort-on-unavailable-fragment",
            "--max-filesize", "20M",
            "-o", "-",
        ]

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc else None

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def buffered_bytes(self) -> int:
        return self.buffer.total_written

    # === 生命週期 ===

    async def start(self) -> "YTDLPStream":
        """
        啟動進程並等待緩衝

        Raises:
            ProviderUnavailable: 無法啟動、逾時、或進程失敗
        """
        logger.debug(f"[yt-dlp] 串流指令: {' '.join(self.args)}")
        try:
            try:
                self._proc = await asyncio.create_subprocess_exec(
                    *self.args,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise ProviderUnavailable(f"yt-dlp spawn failed: {e}", provider="secondary") from e

            self._pump_task = asyncio.create_task(self._pump_stdout())
            self._stderr_task = asyncio.create_task(self._drain_stderr())

            try:
                await asyncio.wait_for(self._ready.wait(), timeout=self.start_timeout)
            except asyncio.TimeoutError:
                raise ProviderUnavailable(
                    f"yt-dlp buffering timed out after {self.start_timeout}s "
                    f"({self.buffered_bytes} bytes)",
                    provider="secondary",
                )

            if self.buffered_bytes < self.buffer_threshold:
                # 未達門檻就結束：只接受成功結束且有資料
                await self._proc.wait()
                if self._proc.returncode != 0 or self.buffered_bytes == 0:
                    await self._wait_stderr()
                    raise ProviderUnavailable(self._failure_message(), provider="secondary")

            logger.debug(f"[yt-dlp] 緩衝完成: {self.buffered_bytes} bytes (pid={self.pid})")
            return self
        except BaseException:
            await self.close()
            raise

    async def close(self) -> None:
        """終止進程並釋放緩衝（可重複呼叫）"""
        if self._closed:
            return
        self._closed = True
        try:
            await self._terminate()
        finally:
            for task in (self._pump_task, self._stderr_task):
                if task and not task.done():
                    task.cancel()
            self.buffer.close()

    async def _terminate(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
            logger.debug(f"[yt-dlp] 進程已結束 (pid={proc.pid})")
        except asyncio.TimeoutError:
            logger.warning(f"[yt-dlp] 進程未回應 SIGTERM，強制結束 (pid={proc.pid})")
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    async def __aenter__(self) -> "YTDLPStream":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # === 內部方法 ===

    async def _pump_stdout(self) -> None:
        try:
            while True:
                chunk = await self._proc.stdout.read(SECONDARY_CHUNK_SIZE)
                if not chunk:
                    break
                self.buffer.write(chunk)
                if self.buffered_bytes >= self.buffer_threshold:
                    self._ready.set()
        finally:
            self.buffer.finish()
            self._ready.set()

    async def _drain_stderr(self) -> None:
        async for line in self._proc.stderr:
            text = line.decode(errors="replace").strip()
            if text:
                self._stderr_lines.append(text)
                # 只保留最後幾行
                del self._stderr_lines[:-20]

    async def _wait_stderr(self) -> None:
        if self._stderr_task and not self._stderr_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._stderr_task), timeout=1)
            except asyncio.TimeoutError:
                pass

    def _failure_message(self) -> str:
        stderr = "\n".join(self._stderr_lines)
        reason = self._detect_error_type(stderr)
        detail = stderr[-300:] if stderr else "no output"
        return f"yt-dlp exited with {self.returncode} ({reason}): {detail}"

    def _detect_error_type(self, error_msg: str) -> str:
        """根據 stderr 判斷失敗原因"""
        lowered = error_msg.lower()
        for error_type, patterns in self.ERROR_PATTERNS.items():
            if any(pattern in lowered for pattern in patterns):
                return error_type
        return "unknown"
