"""
Utilities for link parsing, proxy-backed fetching and file operations.
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
import time
from typing import Any, List, Optional, Sequence

import aiofiles
import aiohttp

from config import (
    ALLORIGINS_GET_API,
    HTTP_HEADERS,
    PLATFORM_DOMAINS,
    PLAYLIST_ID_RE,
    PROXY_STRATEGIES,
    PROXY_TIMEOUT_SECONDS,
    SHORTENER_DOMAINS,
    TEMP_DIR_PREFIX,
    TIKTOK_PROFILE_RE,
    URL_RE,
    ProxyStrategy,
)
from models import DownloadMode, Platform

logger = logging.getLogger(__name__)


def find_first_url(text: str) -> Optional[str]:
    """Return first URL in text."""
    if not text:
        return None
    match = URL_RE.search(text)
    return match.group(0) if match else None


def detect_platform(url: str) -> Platform:
    """Detect source platform by substring search; tolerant of malformed input."""
    low = (url or "").lower().strip()
    if not low:
        return Platform.OTHER

    for platform_value, fragments in PLATFORM_DOMAINS:
        if any(fragment in low for fragment in fragments):
            return Platform(platform_value)

    # A bare @handle is TikTok shorthand.
    if low.startswith("@"):
        return Platform.TIKTOK
    return Platform.OTHER


def extract_username(text: str) -> Optional[str]:
    """Pull a channel handle out of `@handle`, a profile link or a video link."""
    value = (text or "").strip()
    if value.startswith("@") and "/" not in value:
        return value[1:]

    match = TIKTOK_PROFILE_RE.search(value)
    if match:
        return match.group(1)

    for part in value.split("/"):
        if part.startswith("@"):
            return re.split(r"[?#]", part[1:])[0]

    if value and "/" not in value and "." not in value:
        return value
    return None


def extract_playlist_id(url: str) -> Optional[str]:
    """Return the `list=` query value, if any."""
    match = PLAYLIST_ID_RE.search(url or "")
    return match.group(1) if match else None


def infer_mode(text: str) -> Optional[DownloadMode]:
    """Guess the processing mode from the shape of the input; None for empty input."""
    value = (text or "").strip()
    if not value:
        return None
    if "list=" in value:
        return DownloadMode.LIST
    if ("tiktok.com/@" in value or value.startswith("@")) and "/video/" not in value:
        return DownloadMode.CHANNEL
    if "/" not in value and "." not in value and " " not in value:
        return DownloadMode.CHANNEL
    return DownloadMode.SINGLE


def is_shortened_url(url: str) -> bool:
    low = (url or "").lower()
    return any(domain in low for domain in SHORTENER_DOMAINS)


def is_resolved_media_url(url: str) -> bool:
    """True once a YouTube watch page has been turned into a direct media URL."""
    return detect_platform(url) != Platform.YOUTUBE


async def fetch_with_proxy_fallback(
    session: aiohttp.ClientSession,
    target_url: str,
    strategies: Optional[Sequence[ProxyStrategy]] = None,
    timeout: float = PROXY_TIMEOUT_SECONDS,
) -> Any:
    """
    Fetch JSON from `target_url` through the first proxy that answers.

    Each strategy gets exactly one attempt, strictly one after another.
    Returns None when every proxy fails.
    """
    if strategies is None:
        strategies = PROXY_STRATEGIES

    for strategy in strategies:
        proxy_url = strategy.build_url(target_url)
        try:
            async with session.get(
                proxy_url,
                headers=HTTP_HEADERS,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                if not 200 <= response.status < 300:
                    logger.debug("Proxy %s returned HTTP %s", strategy.name, response.status)
                    continue
                text = await response.text()
            payload = strategy.parse(text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            logger.warning("Proxy %s failed for %s: %r", strategy.name, target_url, error)
            continue
        except ValueError:
            logger.debug("Proxy %s returned a non-JSON body", strategy.name)
            continue

        if payload:
            return payload

    logger.warning("All proxies exhausted for %s", target_url)
    return None


async def resolve_short_url(session: aiohttp.ClientSession, url: str) -> str:
    """Expand TikTok/Douyin short links; anything else passes through unchanged."""
    if not is_shortened_url(url):
        return url

    try:
        async with session.get(
            ALLORIGINS_GET_API,
            params={"url": url},
            headers=HTTP_HEADERS,
            timeout=aiohttp.ClientTimeout(total=PROXY_TIMEOUT_SECONDS),
        ) as response:
            data = await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as error:
        logger.warning("Short link expansion failed for %s: %r", url, error)
        return url

    if not isinstance(data, dict):
        return url
    resolved = data.get("url")
    status = data.get("status")
    if not resolved and isinstance(status, dict):
        resolved = status.get("url")
    return resolved if isinstance(resolved, str) and resolved else url


def sanitize_filename(filename: str) -> str:
    """Return filesystem-safe filename."""
    safe_name = re.sub(r'[<>:"/\\|?*]', "_", filename)
    safe_name = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", safe_name)
    safe_name = safe_name.strip().strip(".")
    return (safe_name or "media")[:255]


def build_download_filename(title: str, extension: str, now: Optional[float] = None) -> str:
    """ASCII name like `My_clip-1700000000000.mp4`."""
    stem = re.sub(r"[^a-z0-9]", "_", title or "video", flags=re.IGNORECASE)[:30]
    stamp = int((time.time() if now is None else now) * 1000)
    return sanitize_filename(f"{stem}-{stamp}.{extension}")


def get_file_size_mb(filepath: str) -> float:
    """File size in MB."""
    try:
        return os.path.getsize(filepath) / (1024 * 1024)
    except (FileNotFoundError, OSError):
        return 0.0


def create_temp_dir(prefix: str = TEMP_DIR_PREFIX) -> str:
    """Create temp dir for one download job."""
    return tempfile.mkdtemp(prefix=prefix)


def cleanup_temp_dir(temp_dir: str) -> None:
    """Remove temporary directory."""
    try:
        if temp_dir and os.path.isdir(temp_dir):
            shutil.rmtree(temp_dir)
    except OSError:
        logger.debug("Temp dir cleanup failed for %s", temp_dir, exc_info=True)


def format_duration(seconds: Any) -> str:
    """Human readable duration from seconds (int or numeric string)."""
    try:
        total_seconds = max(0, int(float(seconds)))
    except (TypeError, ValueError):
        total_seconds = 0
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_tags(tags: List[str]) -> str:
    """Render tags as hashtags, keeping an existing leading `#`."""
    return " ".join(tag if tag.startswith("#") else f"#{tag}" for tag in tags if tag)


async def download_file_async(
    url: str,
    filepath: str,
    session: aiohttp.ClientSession,
    timeout: int = 300,
) -> None:
    """Download direct file URL to local path."""
    async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
        response.raise_for_status()
        async with aiofiles.open(filepath, "wb") as file:
            async for chunk in response.content.iter_chunked(8192):
                await file.write(chunk)


def sanitize_user_input(text: str, max_length: int = 1000) -> str:
    """Remove control chars and trim length."""
    if not text:
        return ""
    sanitized = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", text)
    return sanitized.strip()[:max_length]
