"""
Per-chat application state and the pure transitions that change it.

Every function takes the current state and returns a new one; nothing here
performs I/O.
"""

from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple

from models import AiInsights, BatchStatus, DownloadMode, Platform, VideoInfo
from utils import detect_platform, infer_mode


@dataclass(frozen=True)
class AppState:
    url: str = ""
    platform: Platform = Platform.OTHER
    mode: DownloadMode = DownloadMode.SINGLE
    is_loading: bool = False
    current_video: Optional[VideoInfo] = None
    videos: Tuple[VideoInfo, ...] = ()
    channel_username: Optional[str] = None
    next_cursor: int = 0
    has_more: bool = False
    error: Optional[str] = None
    batch: Optional[BatchStatus] = None

    @property
    def is_batch_running(self) -> bool:
        return self.batch is not None


def _cleared(state: AppState) -> AppState:
    return replace(
        state,
        current_video=None,
        videos=(),
        channel_username=None,
        next_cursor=0,
        has_more=False,
        error=None,
    )


def set_url(state: AppState, url: str) -> AppState:
    """New input: re-detect platform and infer the mode from the link shape."""
    mode = infer_mode(url) or state.mode
    return replace(state, url=url, platform=detect_platform(url), mode=mode)


def select_mode(state: AppState, mode: DownloadMode) -> AppState:
    """Manual override; drops whatever result is on display."""
    return replace(_cleared(state), mode=mode)


def start_processing(state: AppState) -> AppState:
    return replace(_cleared(state), is_loading=True)


def show_video(state: AppState, video: VideoInfo) -> AppState:
    return replace(state, is_loading=False, current_video=video, error=None)


def attach_insights(state: AppState, insights: AiInsights) -> AppState:
    if state.current_video is None:
        return state
    return replace(state, current_video=state.current_video.with_insights(insights))


def show_videos(
    state: AppState,
    videos: Sequence[VideoInfo],
    channel_username: Optional[str] = None,
    next_cursor: int = 0,
    has_more: bool = False,
) -> AppState:
    return replace(
        state,
        is_loading=False,
        videos=tuple(videos),
        channel_username=channel_username,
        next_cursor=next_cursor,
        has_more=has_more,
        error=None,
    )


def append_videos(
    state: AppState,
    videos: Sequence[VideoInfo],
    next_cursor: int,
    has_more: bool,
) -> AppState:
    """Add the next channel page to the listing."""
    return replace(
        state,
        is_loading=False,
        videos=state.videos + tuple(videos),
        next_cursor=next_cursor,
        has_more=has_more,
    )


def show_error(state: AppState, message: str) -> AppState:
    # An error never shares the screen with a result.
    return replace(_cleared(state), is_loading=False, error=message)


def start_batch(state: AppState) -> AppState:
    return replace(state, batch=BatchStatus(current=0, total=len(state.videos)))


def advance_batch(state: AppState, status: BatchStatus) -> AppState:
    return replace(state, batch=status)


def finish_batch(state: AppState) -> AppState:
    return replace(state, batch=None)
