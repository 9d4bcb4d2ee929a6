"""
Configuration for the UltraDown media assistant bot.
"""

import json
import os
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple
from urllib.parse import quote

from dotenv import load_dotenv

load_dotenv()


def require_bot_token() -> str:
    """Return bot token or raise if it is not configured."""
    token = os.getenv("BOT_TOKEN", "").strip()
    if not token:
        raise RuntimeError("Hãy đặt biến môi trường BOT_TOKEN")
    return token


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", os.getenv("API_KEY", "")).strip()
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

HISTORY_FILE: str = os.getenv("HISTORY_FILE", "ultra_history_v5.json")
HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "20"))

HEALTH_HOST: str = os.getenv("HEALTH_HOST", "0.0.0.0")
HEALTH_PORT: int = int(os.getenv("PORT", "10000"))

PROXY_TIMEOUT_SECONDS: float = float(os.getenv("PROXY_TIMEOUT_SECONDS", "12"))
BATCH_DELAY_SECONDS: float = float(os.getenv("BATCH_DELAY_SECONDS", "1.5"))
CHANNEL_PAGE_SIZE: int = int(os.getenv("CHANNEL_PAGE_SIZE", "35"))
PLAYLIST_MAX_CANDIDATES: int = 50
PLAYLIST_RAW_FALLBACK_CHARS: int = 30000
PLAYLIST_PROMPT_FALLBACK_CHARS: int = 20000

MAX_FILE_SIZE_MB: int = int(os.getenv("MAX_FILE_SIZE_MB", "50"))  # Bot API upload limit
DOWNLOAD_TIMEOUT_SECONDS: int = int(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "300"))
TEMP_DIR_PREFIX: str = "ultradown_"

USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/121.0.0.0 Safari/537.36"
)

TIKWM_VIDEO_API: str = "https://www.tikwm.com/api/"
TIKWM_USER_POSTS_API: str = "https://www.tikwm.com/api/user/posts"
COBALT_API: str = "https://api.cobalt.tools/api/json"
COBALT_VIDEO_QUALITY: str = "1080"
ALLORIGINS_GET_API: str = "https://api.allorigins.win/get"

YOUTUBE_PLAYLIST_URL: str = "https://www.youtube.com/playlist?list={playlist_id}"
YOUTUBE_WATCH_URL: str = "https://www.youtube.com/watch?v={video_id}"
YOUTUBE_THUMBNAIL_URL: str = "https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"
PLACEHOLDER_THUMBNAIL: str = "https://images.unsplash.com/photo-1611162617474-5b21e879e113?q=80&w=200"

YT_INITIAL_DATA_MARKER: str = "var ytInitialData = "
YT_INITIAL_DATA_END: str = ";</script>"
PLAYLIST_ITEM_RE: re.Pattern[str] = re.compile(
    r'"videoId":"([^"]+)","title":\{"runs":\[\{"text":"([^"]+)"'
)

URL_RE: re.Pattern[str] = re.compile(r"https?://[^\s<>'\"()\[\]{}]+", re.IGNORECASE)
PLAYLIST_ID_RE: re.Pattern[str] = re.compile(r"[&?]list=([^&]+)")
TIKTOK_PROFILE_RE: re.Pattern[str] = re.compile(r"tiktok\.com/@([a-zA-Z0-9_.-]+)")

SHORTENER_DOMAINS: Tuple[str, ...] = (
    "vt.tiktok.com",
    "vm.tiktok.com",
    "v.douyin.com",
)

# Ordered: first match wins.
PLATFORM_DOMAINS: List[Tuple[str, Tuple[str, ...]]] = [
    ("tiktok", ("tiktok.com",)),
    ("douyin", ("douyin.com",)),
    ("youtube", ("youtube.com", "youtu.be")),
    ("instagram", ("instagram.com",)),
    ("facebook", ("facebook.com", "fb.watch")),
    ("twitter", ("twitter.com", "x.com")),
    ("kuaishou", ("kuaishou.com", "chenzhongtech.com")),
    ("bilibili", ("bilibili.com",)),
]


def parse_json_payload(text: str) -> Any:
    """Parse proxy body as JSON, unwrapping a `{"contents": "..."}` envelope."""
    data = json.loads(text)
    if isinstance(data, dict) and isinstance(data.get("contents"), str) and "code" not in data:
        return json.loads(data["contents"])
    return data


@dataclass(frozen=True)
class ProxyStrategy:
    """One CORS-bypass endpoint: how to wrap a target URL and read the reply."""

    name: str
    build_url: Callable[[str], str]
    parse: Callable[[str], Any] = parse_json_payload


PROXY_STRATEGIES: List[ProxyStrategy] = [
    ProxyStrategy(
        name="allorigins",
        build_url=lambda target: f"https://api.allorigins.win/raw?url={quote(target, safe='')}",
    ),
    ProxyStrategy(
        name="corsproxy",
        build_url=lambda target: f"https://corsproxy.io/?{quote(target, safe='')}",
    ),
]

HTTP_HEADERS: Dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
}
