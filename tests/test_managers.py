"""
Tests for history persistence, delivery and batch sequencing.
"""

import asyncio
import json
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, call

import aiohttp

from errors import YOUTUBE_LINK_FAILED
from managers import DownloadManager, HistoryManager, add_history_entry
from models import HistoryStatus, MediaKind, Platform, VideoInfo

from fakes import FakeSession


def _video(video_id, platform=Platform.TIKTOK, url=None, music_url=None):
    return VideoInfo(
        id=video_id,
        title=f"Video {video_id}",
        author="@alice",
        thumbnail="",
        download_url=url or f"https://cdn/{video_id}.mp4",
        cover_url="",
        platform=platform,
        music_url=music_url,
    )


async def _reject_bare_markup(text, **kwargs):
    if "<" in text:
        raise ValueError("Bad Request: can't parse entities")


async def _write_small_file(url, filepath, session, timeout):
    Path(filepath).write_bytes(b"data")


class _StubResolver:
    def __init__(self, result=None):
        self.analyze_link = AsyncMock(return_value=result)


def _manager(tmp_path, resolver=None, session=None):
    history = HistoryManager(path=str(tmp_path / "history.json"))
    sleep = AsyncMock()
    manager = DownloadManager(
        resolver=resolver or _StubResolver(),
        history=history,
        session=session or FakeSession(),
        batch_delay=1.5,
        sleep=sleep,
    )
    return manager, history, sleep


class TestHistory:
    def test_same_video_moves_to_front_without_duplicate(self):
        entries = add_history_entry([], _video("a"), now_ms=1)
        entries = add_history_entry(entries, _video("b"), now_ms=2)
        entries = add_history_entry(entries, _video("a"), now_ms=3)

        assert [entry.video.id for entry in entries] == ["a", "b"]
        assert entries[0].id == "3"
        assert entries[0].timestamp == 3
        assert entries[0].status == HistoryStatus.COMPLETED

    def test_keeps_only_latest_twenty(self):
        entries = []
        for index in range(21):
            entries = add_history_entry(entries, _video(str(index)), now_ms=index)

        assert len(entries) == 20
        assert entries[0].video.id == "20"
        assert "0" not in [entry.video.id for entry in entries]

    def test_saved_history_survives_reload(self, tmp_path):
        history = HistoryManager(path=str(tmp_path / "history.json"))
        asyncio.run(history.save(_video("a")))
        asyncio.run(history.save(_video("b")))

        reloaded = HistoryManager(path=str(tmp_path / "history.json"))
        entries = asyncio.run(reloaded.load())

        assert [entry.video.id for entry in entries] == ["b", "a"]
        raw = json.loads((tmp_path / "history.json").read_text(encoding="utf-8"))
        assert raw[0]["video"]["downloadUrl"] == "https://cdn/b.mp4"

    def test_clear_persists_empty_list(self, tmp_path):
        history = HistoryManager(path=str(tmp_path / "history.json"))
        asyncio.run(history.save(_video("a")))
        asyncio.run(history.clear())

        assert history.entries == []
        assert json.loads((tmp_path / "history.json").read_text(encoding="utf-8")) == []

    def test_missing_or_corrupt_file_loads_empty(self, tmp_path):
        assert asyncio.run(HistoryManager(path=str(tmp_path / "absent.json")).load()) == []

        corrupt = tmp_path / "corrupt.json"
        corrupt.write_text("{not json", encoding="utf-8")
        assert asyncio.run(HistoryManager(path=str(corrupt)).load()) == []


class TestResolveFileUrl:
    def test_audio_prefers_music_url(self, tmp_path):
        manager, _, _ = _manager(tmp_path)
        video = _video("a", music_url="https://cdn/a.mp3")
        assert asyncio.run(manager.resolve_file_url(video, MediaKind.AUDIO)) == "https://cdn/a.mp3"

    def test_youtube_watch_page_is_re_resolved(self, tmp_path):
        resolver = _StubResolver(_video("x", platform=Platform.YOUTUBE, url="https://cobalt.cdn/x.mp4"))
        manager, _, _ = _manager(tmp_path, resolver=resolver)
        video = _video("yt1", platform=Platform.YOUTUBE, url="https://www.youtube.com/watch?v=yt1")

        result = asyncio.run(manager.resolve_file_url(video, MediaKind.VIDEO))

        assert result == "https://cobalt.cdn/x.mp4"
        resolver.analyze_link.assert_awaited_once_with("https://www.youtube.com/watch?v=yt1")

    def test_already_resolved_youtube_url_is_kept(self, tmp_path):
        resolver = _StubResolver()
        manager, _, _ = _manager(tmp_path, resolver=resolver)
        video = _video("yt1", platform=Platform.YOUTUBE, url="https://cobalt.cdn/yt1.mp4")

        assert asyncio.run(manager.resolve_file_url(video, MediaKind.VIDEO)) == "https://cobalt.cdn/yt1.mp4"
        resolver.analyze_link.assert_not_awaited()


class TestBatch:
    def test_opens_every_video_in_order_with_pacing(self, tmp_path):
        manager, history, sleep = _manager(tmp_path)
        videos = [_video(str(index)) for index in range(3)]
        open_link = AsyncMock(return_value=True)
        progress = AsyncMock()

        opened = asyncio.run(manager.run_batch(videos, open_link, progress))

        assert opened == 3
        assert open_link.await_args_list == [
            call(videos[0], "https://cdn/0.mp4"),
            call(videos[1], "https://cdn/1.mp4"),
            call(videos[2], "https://cdn/2.mp4"),
        ]
        assert sleep.await_args_list == [call(1.5)] * 3
        assert [c.args[0].current for c in progress.await_args_list] == [1, 2, 3]
        assert [entry.video.id for entry in history.entries] == ["2", "1", "0"]

    def test_halts_on_first_link_that_cannot_be_opened(self, tmp_path):
        manager, history, sleep = _manager(tmp_path)
        videos = [_video(str(index)) for index in range(4)]
        open_link = AsyncMock(side_effect=[True, False, True, True])

        opened = asyncio.run(manager.run_batch(videos, open_link))

        assert opened == 1
        assert open_link.await_count == 2
        assert sleep.await_count == 1
        assert [entry.video.id for entry in history.entries] == ["0"]

    def test_unresolvable_youtube_item_sends_watch_url_and_halts(self, tmp_path):
        manager, history, sleep = _manager(tmp_path, resolver=_StubResolver(None))
        videos = [
            _video(f"yt{index}", platform=Platform.YOUTUBE, url=f"https://www.youtube.com/watch?v=yt{index}")
            for index in range(3)
        ]
        open_link = AsyncMock(return_value=True)

        opened = asyncio.run(manager.run_batch(videos, open_link))

        assert opened == 0
        open_link.assert_awaited_once_with(videos[0], "https://www.youtube.com/watch?v=yt0")
        assert history.entries == []
        sleep.assert_not_awaited()


class TestDeliver:
    def test_fetch_failure_falls_back_to_link(self, tmp_path):
        session = FakeSession([("cdn/a.mp4", aiohttp.ClientConnectionError("reset"))])
        manager, history, _ = _manager(tmp_path, session=session)
        message = SimpleNamespace(answer=AsyncMock(), answer_video=AsyncMock())

        delivered = asyncio.run(manager.deliver(message, _video("a"), MediaKind.VIDEO))

        assert delivered is True
        message.answer_video.assert_not_awaited()
        assert "https://cdn/a.mp4" in message.answer.await_args.args[0]
        assert history.entries[0].video.id == "a"

    def test_unresolvable_youtube_reports_error(self, tmp_path):
        manager, history, _ = _manager(tmp_path, resolver=_StubResolver(None))
        message = SimpleNamespace(answer=AsyncMock())
        video = _video("yt1", platform=Platform.YOUTUBE, url="https://youtu.be/yt1")

        delivered = asyncio.run(manager.deliver(message, video, MediaKind.VIDEO))

        assert delivered is False
        assert message.answer.await_args.args[0] == YOUTUBE_LINK_FAILED
        assert history.entries == []

    def test_title_markup_is_escaped_in_link_fallback(self, tmp_path):
        session = FakeSession([("cdn/a.mp4", aiohttp.ClientConnectionError("reset"))])
        manager, history, _ = _manager(tmp_path, session=session)
        message = SimpleNamespace(answer=AsyncMock(side_effect=_reject_bare_markup))
        video = replace(_video("a"), title="a<3 cats & dogs")

        delivered = asyncio.run(manager.deliver(message, video, MediaKind.VIDEO))

        assert delivered is True
        assert "a&lt;3 cats &amp; dogs" in message.answer.await_args.args[0]
        assert history.entries[0].video.id == "a"

    def test_title_markup_is_escaped_in_caption(self, tmp_path, monkeypatch):
        manager, history, _ = _manager(tmp_path)
        monkeypatch.setattr("managers.download_file_async", _write_small_file)
        message = SimpleNamespace(answer=AsyncMock(), answer_video=AsyncMock())
        video = replace(_video("a"), title="<b>clip")

        delivered = asyncio.run(manager.deliver(message, video, MediaKind.VIDEO))

        assert delivered is True
        assert message.answer_video.await_args.kwargs["caption"] == "&lt;b&gt;clip"
        message.answer.assert_not_awaited()
        assert history.entries[0].video.id == "a"
