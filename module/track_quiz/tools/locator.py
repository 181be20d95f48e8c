"""
外部執行檔定位

優先順序：
1. 系統 PATH
2. 本地快取目錄（手動放置的執行檔）

找到後以 `<tool> -version` / `--version` 驗證可執行。
"""

import asyncio
import platform
import shutil
from pathlib import Path
from typing import Dict, Optional
from loguru import logger


class ToolLocator:
    """
    外部執行檔定位器

    使用方式：
        locator = ToolLocator()
        ffmpeg = await locator.ensure("ffmpeg")
        ytdlp = await locator.ensure("yt-dlp")
    """

    # 驗證參數與預期輸出
    VERSION_CHECKS: Dict[str, tuple] = {
        "ffmpeg": ("-version", "ffmpeg version"),
        "yt-dlp": ("--version", ""),
    }

    def __init__(self, cache_dir: Optional[str] = None):
        """
        Args:
            cache_dir: 本地快取目錄，預設為本模組目錄下的 bin
        """
        self.cache_dir = Path(cache_dir) if cache_dir else Path(__file__).parent / "bin"
        self._resolved: Dict[str, str] = {}

    async def ensure(self, name: str) -> Optional[str]:
        """
        取得可執行路徑

        Returns:
            執行檔路徑，找不到返回 None
        """
        if name in self._resolved:
            return self._resolved[name]

        for candidate in (shutil.which(name), self._cached_path(name)):
            if candidate and await self._verify(name, candidate):
                logger.info(f"使用 {name}: {candidate}")
                self._resolved[name] = candidate
                return candidate

        logger.error(f"找不到可用的 {name}，請安裝後加入 PATH 或放在 {self.cache_dir}")
        return None

    def _cached_path(self, name: str) -> Optional[str]:
        filename = f"{name}.exe" if platform.system() == "Windows" else name
        path = self.cache_dir / filename
        return str(path) if path.exists() else None

    async def _verify(self, name: str, path: str) -> bool:
        flag, expected = self.VERSION_CHECKS.get(name, ("--version", ""))
        try:
            proc = await asyncio.create_subprocess_exec(
                path, flag,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.debug(f"{name} 驗證失敗 ({path}): {e}")
            return False
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=10)
        except asyncio.TimeoutError:
            logger.debug(f"{name} 驗證逾時 ({path})")
            proc.kill()
            await proc.wait()
            return False
        return proc.returncode == 0 and expected in stdout.decode(errors="replace")
