"""
Download history, single-file delivery and paced batch downloads.
"""

import asyncio
import html
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import aiofiles
import aiohttp

from config import (
    BATCH_DELAY_SECONDS,
    DOWNLOAD_TIMEOUT_SECONDS,
    HISTORY_FILE,
    HISTORY_LIMIT,
    MAX_FILE_SIZE_MB,
)
from errors import YOUTUBE_LINK_FAILED
from models import BatchStatus, HistoryEntry, HistoryStatus, MediaKind, Platform, VideoInfo
from resolvers import MediaResolver
from utils import (
    build_download_filename,
    cleanup_temp_dir,
    create_temp_dir,
    download_file_async,
    get_file_size_mb,
    is_resolved_media_url,
)

logger = logging.getLogger(__name__)

OpenLink = Callable[[VideoInfo, str], Awaitable[bool]]
ProgressCallback = Callable[[BatchStatus], Awaitable[None]]


def add_history_entry(
    entries: Sequence[HistoryEntry],
    video: VideoInfo,
    now_ms: int,
    limit: int = HISTORY_LIMIT,
) -> List[HistoryEntry]:
    """Newest first, one entry per video id, at most `limit` entries."""
    entry = HistoryEntry(
        id=str(now_ms),
        video=video,
        timestamp=now_ms,
        status=HistoryStatus.COMPLETED,
    )
    kept = [item for item in entries if item.video.id != video.id]
    return [entry, *kept][:limit]


class HistoryManager:
    """History list persisted as JSON on every change."""

    def __init__(self, path: str = HISTORY_FILE, limit: int = HISTORY_LIMIT):
        self.path = path
        self.limit = limit
        self.entries: List[HistoryEntry] = []
        self.lock = asyncio.Lock()

    async def load(self) -> List[HistoryEntry]:
        if not os.path.exists(self.path):
            self.entries = []
            return self.entries

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as file:
                raw = await file.read()
            self.entries = [HistoryEntry.from_dict(item) for item in json.loads(raw)][: self.limit]
        except (OSError, ValueError, KeyError, TypeError) as error:
            logger.warning("History file %s is unreadable, starting empty: %s", self.path, error)
            self.entries = []
        return self.entries

    async def save(self, video: VideoInfo) -> HistoryEntry:
        async with self.lock:
            self.entries = add_history_entry(
                self.entries, video, int(time.time() * 1000), limit=self.limit
            )
            await self._persist()
            return self.entries[0]

    async def clear(self) -> None:
        async with self.lock:
            self.entries = []
            await self._persist()

    async def _persist(self) -> None:
        payload = json.dumps([entry.to_dict() for entry in self.entries], ensure_ascii=False)
        async with aiofiles.open(self.path, "w", encoding="utf-8") as file:
            await file.write(payload)


class DownloadManager:
    """Delivers resolved media to a chat, one file or a paced batch of links."""

    def __init__(
        self,
        resolver: MediaResolver,
        history: HistoryManager,
        session: aiohttp.ClientSession,
        batch_delay: float = BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.resolver = resolver
        self.history = history
        self.session = session
        self.batch_delay = batch_delay
        self._sleep = sleep

    async def resolve_file_url(self, video: VideoInfo, kind: MediaKind) -> Optional[str]:
        """Direct media URL; YouTube watch pages are re-resolved first."""
        file_url = video.media_url(kind)
        if video.platform == Platform.YOUTUBE and not is_resolved_media_url(file_url):
            analyzed = await self.resolver.analyze_link(file_url)
            if analyzed and analyzed.download_url:
                return analyzed.download_url
            logger.warning("YouTube link resolution failed for %s", file_url)
            return None
        return file_url

    async def deliver(self, message: Any, video: VideoInfo, kind: MediaKind) -> bool:
        """Send the file itself; falls back to sending the link when fetching fails."""
        file_url = await self.resolve_file_url(video, kind)
        if not file_url:
            await message.answer(YOUTUBE_LINK_FAILED, parse_mode="HTML")
            return False

        extension = "mp3" if kind == MediaKind.AUDIO else "mp4"
        temp_dir = create_temp_dir()
        try:
            filepath = os.path.join(temp_dir, build_download_filename(video.title, extension))
            await download_file_async(
                url=file_url,
                filepath=filepath,
                session=self.session,
                timeout=DOWNLOAD_TIMEOUT_SECONDS,
            )
            if get_file_size_mb(filepath) > MAX_FILE_SIZE_MB:
                raise ValueError(f"File too large ({MAX_FILE_SIZE_MB} MB max)")
            await self._send_file(message, filepath, kind, video.title)
        except Exception as error:
            logger.warning("Direct delivery failed for %s, sending link instead: %s", file_url, error)
            await message.answer(
                f"🔗 {html.escape(video.title)}\n{html.escape(file_url)}",
                disable_web_page_preview=True,
            )
        finally:
            cleanup_temp_dir(temp_dir)

        await self.history.save(video)
        return True

    async def _send_file(self, message: Any, filepath: str, kind: MediaKind, title: str) -> None:
        from aiogram.types import FSInputFile

        caption = html.escape(title[:1000] or Path(filepath).name)
        file = FSInputFile(filepath)
        try:
            if kind == MediaKind.AUDIO:
                await message.answer_audio(audio=file, caption=caption)
            else:
                await message.answer_video(video=file, caption=caption)
        except Exception:
            logger.debug("Typed upload failed, retrying as document", exc_info=True)
            await message.answer_document(document=FSInputFile(filepath), caption=caption)

    async def run_batch(
        self,
        videos: Sequence[VideoInfo],
        open_link: OpenLink,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Open every video's download link in order, pausing between items.

        Stops at the first link that cannot be opened. A YouTube item that cannot be
        re-resolved still has its watch page sent, then stops the batch unsaved.
        Returns how many were opened.
        """
        total = len(videos)
        opened = 0
        for index, video in enumerate(videos):
            if on_progress is not None:
                await on_progress(BatchStatus(current=index + 1, total=total))

            file_url = await self.resolve_file_url(video, MediaKind.VIDEO)
            if not file_url:
                await open_link(video, video.download_url)
                logger.warning("Batch halted at unresolved YouTube item %s/%s (%s)", index + 1, total, video.id)
                break

            if not await open_link(video, file_url):
                logger.warning("Batch halted at item %s/%s (%s)", index + 1, total, video.id)
                break

            await self.history.save(video)
            opened += 1
            await self._sleep(self.batch_delay)

        return opened
