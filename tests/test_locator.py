"""Tests for external executable lookup."""

import sys

import pytest

from module.track_quiz.tools import locator as locator_module
from module.track_quiz.tools.locator import ToolLocator


@pytest.mark.asyncio
async def test_tool_found_on_path_is_verified_and_remembered(tmp_path, monkeypatch):
    calls = []

    def fake_which(name):
        calls.append(name)
        return sys.executable

    monkeypatch.setattr(locator_module.shutil, "which", fake_which)
    tools = ToolLocator(cache_dir=str(tmp_path))

    assert await tools.ensure("yt-dlp") == sys.executable
    assert await tools.ensure("yt-dlp") == sys.executable
    assert calls == ["yt-dlp"]


@pytest.mark.asyncio
async def test_missing_tool_returns_none(tmp_path, monkeypatch):
    monkeypatch.setattr(locator_module.shutil, "which", lambda name: None)
    tools = ToolLocator(cache_dir=str(tmp_path))

    assert await tools.ensure("ffmpeg") is None


@pytest.mark.asyncio
async def test_tool_failing_version_check_is_rejected(tmp_path, monkeypatch):
    # python 的 -version 不是合法參數，驗證應失敗
    monkeypatch.setattr(locator_module.shutil, "which", lambda name: sys.executable)
    tools = ToolLocator(cache_dir=str(tmp_path))

    assert await tools.ensure("ffmpeg") is None
