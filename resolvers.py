"""
Link resolution: single videos, TikTok channels and YouTube playlists.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from ai import PLAYLIST_SCHEMA, StructuredGenerator, build_playlist_prompt
from config import (
    ALLORIGINS_GET_API,
    CHANNEL_PAGE_SIZE,
    COBALT_API,
    COBALT_VIDEO_QUALITY,
    PLACEHOLDER_THUMBNAIL,
    PLAYLIST_ITEM_RE,
    PLAYLIST_MAX_CANDIDATES,
    PLAYLIST_PROMPT_FALLBACK_CHARS,
    PLAYLIST_RAW_FALLBACK_CHARS,
    PROXY_TIMEOUT_SECONDS,
    TIKWM_USER_POSTS_API,
    TIKWM_VIDEO_API,
    USER_AGENT,
    YOUTUBE_PLAYLIST_URL,
    YOUTUBE_THUMBNAIL_URL,
    YOUTUBE_WATCH_URL,
    YT_INITIAL_DATA_END,
    YT_INITIAL_DATA_MARKER,
)
from models import ChannelPage, Platform, VideoInfo
from utils import detect_platform, fetch_with_proxy_fallback, resolve_short_url

logger = logging.getLogger(__name__)


def map_tikwm_video(data: Dict[str, Any], platform: Platform) -> VideoInfo:
    """Map a TikWM single-video payload into a VideoInfo."""
    video_id = str(data["id"])
    label = "Douyin" if platform == Platform.DOUYIN else "TikTok"
    author_data = data.get("author") or {}
    if author_data.get("nickname"):
        author = f"@{author_data['nickname']}"
    elif author_data.get("unique_id"):
        author = f"@{author_data['unique_id']}"
    else:
        author = "@creator"

    return VideoInfo(
        id=video_id,
        title=data.get("title") or f"{label} Video {video_id}",
        author=author,
        thumbnail=data.get("cover") or "",
        duration=str(data["duration"]) if data.get("duration") else "0",
        download_url=data.get("play") or "",
        music_url=data.get("music"),
        cover_url=data.get("cover") or "",
        platform=platform,
    )


def map_channel_item(item: Dict[str, Any], username: str) -> VideoInfo:
    """Map one TikWM user-posts entry; the backend uses two naming variants."""
    video_id = str(item.get("video_id") or item.get("id") or "")
    cover = item.get("cover") or item.get("origin_cover") or ""
    return VideoInfo(
        id=video_id,
        title=item.get("title") or f"TikTok Video {video_id}",
        author=f"@{username}",
        thumbnail=cover,
        duration=str(item["duration"]) if item.get("duration") else "0",
        download_url=item.get("play") or item.get("hdplay") or "",
        music_url=item.get("music"),
        cover_url=cover,
        platform=Platform.TIKTOK,
    )


def extract_initial_data(html: str) -> str:
    """Cut the ytInitialData blob out of a playlist page, or a raw prefix without it."""
    start = html.find(YT_INITIAL_DATA_MARKER)
    if start == -1:
        return html[:PLAYLIST_RAW_FALLBACK_CHARS]

    tail = html[start + len(YT_INITIAL_DATA_MARKER):]
    end = tail.find(YT_INITIAL_DATA_END)
    return tail if end == -1 else tail[:end]


def compact_playlist_data(data: str) -> str:
    """Keep only `videoId`/`title` fragments so the AI prompt stays small."""
    candidates = [
        match.group(0)
        for _, match in zip(range(PLAYLIST_MAX_CANDIDATES), PLAYLIST_ITEM_RE.finditer(data))
    ]
    if candidates:
        return "\n".join(candidates)
    return data[:PLAYLIST_PROMPT_FALLBACK_CHARS]


def map_playlist_item(item: Dict[str, Any]) -> VideoInfo:
    video_id = str(item["id"])
    thumbnail = YOUTUBE_THUMBNAIL_URL.format(video_id=video_id)
    return VideoInfo(
        id=video_id,
        title=str(item.get("title") or ""),
        author="YouTube Playlist",
        thumbnail=thumbnail,
        download_url=YOUTUBE_WATCH_URL.format(video_id=video_id),
        cover_url=thumbnail,
        platform=Platform.YOUTUBE,
    )


class MediaResolver:
    """Turns user input into normalized VideoInfo records."""

    def __init__(self, session: aiohttp.ClientSession, generator: StructuredGenerator):
        self.session = session
        self.generator = generator

    async def analyze_link(self, url: str) -> Optional[VideoInfo]:
        """Resolve one link: TikWM for TikTok/Douyin, then Cobalt as generic fallback."""
        resolved_url = await resolve_short_url(self.session, url)
        platform = detect_platform(resolved_url)

        if platform in (Platform.TIKTOK, Platform.DOUYIN):
            target = f"{TIKWM_VIDEO_API}?url={quote(resolved_url, safe='')}&hd=1"
            payload = await fetch_with_proxy_fallback(self.session, target)
            if isinstance(payload, dict) and payload.get("code") == 0 and payload.get("data"):
                try:
                    return map_tikwm_video(payload["data"], platform)
                except (KeyError, TypeError) as error:
                    logger.warning("Malformed TikWM payload for %s: %r", resolved_url, error)

        return await self._resolve_with_cobalt(resolved_url, platform)

    async def _resolve_with_cobalt(self, url: str, platform: Platform) -> Optional[VideoInfo]:
        try:
            async with self.session.post(
                COBALT_API,
                json={"url": url, "vQuality": COBALT_VIDEO_QUALITY},
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                },
                timeout=aiohttp.ClientTimeout(total=PROXY_TIMEOUT_SECONDS),
            ) as response:
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as error:
            logger.warning("Cobalt error for %s: %r", url, error)
            return None

        if not isinstance(data, dict) or not data.get("url"):
            return None

        return VideoInfo(
            id=uuid.uuid4().hex[:9],
            title=data.get("filename") or f"Video from {platform.value}",
            author=platform.value.capitalize(),
            thumbnail=PLACEHOLDER_THUMBNAIL,
            download_url=data["url"],
            cover_url="",
            platform=platform,
        )

    async def fetch_channel_videos(self, username: str, cursor: int = 0) -> ChannelPage:
        """Fetch one page of a TikTok user's posts."""
        clean_username = username.lstrip("@")
        target = (
            f"{TIKWM_USER_POSTS_API}?unique_id={quote(clean_username, safe='')}"
            f"&count={CHANNEL_PAGE_SIZE}&cursor={cursor}"
        )
        payload = await fetch_with_proxy_fallback(self.session, target)
        if not isinstance(payload, dict) or payload.get("code") != 0 or not payload.get("data"):
            return ChannelPage(reachable=False)

        data = payload["data"]
        items = data.get("videos") or data.get("posts") or []
        if not items:
            return ChannelPage(reachable=True)

        videos = [map_channel_item(item, clean_username) for item in items if isinstance(item, dict)]
        try:
            next_cursor = int(data.get("cursor") or 0)
        except (TypeError, ValueError):
            next_cursor = 0
        has_more = data.get("hasMore") is True or data.get("hasMore") == 1
        return ChannelPage(videos=videos, next_cursor=next_cursor, has_more=has_more, reachable=True)

    async def fetch_playlist_videos(self, playlist_id: str) -> List[VideoInfo]:
        """All-or-nothing: any failure yields an empty list."""
        target = YOUTUBE_PLAYLIST_URL.format(playlist_id=playlist_id)
        try:
            async with self.session.get(
                ALLORIGINS_GET_API,
                params={"url": target},
                timeout=aiohttp.ClientTimeout(total=PROXY_TIMEOUT_SECONDS),
            ) as response:
                page = await response.json(content_type=None)
            html = page["contents"]

            compact = compact_playlist_data(extract_initial_data(html))
            text = await self.generator.generate(build_playlist_prompt(compact), PLAYLIST_SCHEMA)
            items = json.loads(text)
            return [map_playlist_item(item) for item in items]
        except Exception:
            logger.exception("Playlist fetch failed for %s", playlist_id)
            return []
