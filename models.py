"""
Data models for the media assistant.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class Platform(Enum):
    """Supported media source platforms."""

    TIKTOK = "tiktok"
    DOUYIN = "douyin"
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    TWITTER = "twitter"
    KUAISHOU = "kuaishou"
    BILIBILI = "bilibili"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return _PLATFORM_NAMES[self]


_PLATFORM_NAMES: Dict[Platform, str] = {
    Platform.TIKTOK: "TikTok",
    Platform.DOUYIN: "Douyin",
    Platform.YOUTUBE: "YouTube",
    Platform.INSTAGRAM: "Instagram",
    Platform.FACEBOOK: "Facebook",
    Platform.TWITTER: "X / Twitter",
    Platform.KUAISHOU: "Kuaishou",
    Platform.BILIBILI: "Bilibili",
    Platform.OTHER: "Nhận diện thông minh",
}


class DownloadMode(Enum):
    """How a submitted input is processed."""

    SINGLE = "single"
    CHANNEL = "channel"
    LIST = "list"


class MediaKind(Enum):
    """What to fetch from a resolved video."""

    VIDEO = "video"
    AUDIO = "audio"


class HistoryStatus(Enum):
    """Lifecycle states for a history entry."""

    COMPLETED = "completed"
    FAILED = "failed"
    PROCESSING = "processing"


@dataclass(frozen=True)
class AiInsights:
    summary: str
    tags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class VideoInfo:
    """Normalized record for one downloadable video."""

    id: str
    title: str
    author: str
    thumbnail: str
    download_url: str
    cover_url: str
    platform: Platform
    duration: Optional[str] = None
    music_url: Optional[str] = None
    ai_insights: Optional[AiInsights] = None

    def with_insights(self, insights: AiInsights) -> "VideoInfo":
        return replace(self, ai_insights=insights)

    def media_url(self, kind: MediaKind) -> str:
        """URL to fetch for the requested kind; audio falls back to the video stream."""
        if kind == MediaKind.AUDIO:
            return self.music_url or self.download_url
        return self.download_url

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "thumbnail": self.thumbnail,
            "downloadUrl": self.download_url,
            "coverUrl": self.cover_url,
            "platform": self.platform.value,
        }
        if self.duration is not None:
            data["duration"] = self.duration
        if self.music_url is not None:
            data["musicUrl"] = self.music_url
        if self.ai_insights is not None:
            data["aiInsights"] = {
                "summary": self.ai_insights.summary,
                "tags": list(self.ai_insights.tags),
            }
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoInfo":
        insights = data.get("aiInsights")
        try:
            platform = Platform(data.get("platform", "other"))
        except ValueError:
            platform = Platform.OTHER
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            author=data.get("author", ""),
            thumbnail=data.get("thumbnail", ""),
            download_url=data.get("downloadUrl", ""),
            cover_url=data.get("coverUrl", ""),
            platform=platform,
            duration=data.get("duration"),
            music_url=data.get("musicUrl"),
            ai_insights=(
                AiInsights(summary=insights.get("summary", ""), tags=list(insights.get("tags", [])))
                if insights
                else None
            ),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """One saved download."""

    id: str
    video: VideoInfo
    timestamp: int
    status: HistoryStatus = HistoryStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "video": self.video.to_dict(),
            "timestamp": self.timestamp,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=str(data["id"]),
            video=VideoInfo.from_dict(data["video"]),
            timestamp=int(data.get("timestamp", 0)),
            status=HistoryStatus(data.get("status", HistoryStatus.COMPLETED.value)),
        )


@dataclass(frozen=True)
class BatchStatus:
    """Progress cursor of an in-flight batch download."""

    current: int
    total: int

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return int(self.current * 100 / self.total)


@dataclass
class ChannelPage:
    """One page of a channel listing."""

    videos: List[VideoInfo] = field(default_factory=list)
    next_cursor: int = 0
    has_more: bool = False
    # False when the backend could not be reached or rejected the request.
    reachable: bool = False
