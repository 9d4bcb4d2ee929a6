"""
Unit tests for data models.
"""

from models import (
    AiInsights,
    BatchStatus,
    ChannelPage,
    HistoryEntry,
    HistoryStatus,
    MediaKind,
    Platform,
    VideoInfo,
)


def _video(**overrides):
    fields = dict(
        id="42",
        title="Clip",
        author="@alice",
        thumbnail="https://img/t.jpg",
        download_url="https://cdn/v.mp4",
        cover_url="https://img/c.jpg",
        platform=Platform.TIKTOK,
    )
    fields.update(overrides)
    return VideoInfo(**fields)


def test_platform_enum_values():
    assert Platform.TIKTOK.value == "tiktok"
    assert Platform.OTHER.value == "other"
    assert Platform.TWITTER.display_name == "X / Twitter"
    assert len(Platform) == 9


def test_with_insights_returns_new_record():
    video = _video()
    enriched = video.with_insights(AiInsights(summary="Vui", tags=["#a"]))

    assert video.ai_insights is None
    assert enriched.ai_insights.summary == "Vui"
    assert enriched.id == video.id


def test_media_url_audio_falls_back_to_video():
    assert _video().media_url(MediaKind.AUDIO) == "https://cdn/v.mp4"
    assert _video(music_url="https://cdn/a.mp3").media_url(MediaKind.AUDIO) == "https://cdn/a.mp3"
    assert _video(music_url="https://cdn/a.mp3").media_url(MediaKind.VIDEO) == "https://cdn/v.mp4"


def test_video_dict_uses_camel_case_keys_and_restores():
    video = _video(duration="15", music_url="https://cdn/a.mp3").with_insights(
        AiInsights(summary="S", tags=["x", "y"])
    )
    data = video.to_dict()

    assert data["downloadUrl"] == "https://cdn/v.mp4"
    assert data["aiInsights"] == {"summary": "S", "tags": ["x", "y"]}
    assert VideoInfo.from_dict(data) == video


def test_unknown_platform_value_maps_to_other():
    data = _video().to_dict()
    data["platform"] = "myspace"
    assert VideoInfo.from_dict(data).platform == Platform.OTHER


def test_history_entry_defaults_to_completed():
    entry = HistoryEntry(id="1", video=_video(), timestamp=1)
    assert entry.status == HistoryStatus.COMPLETED
    assert HistoryEntry.from_dict(entry.to_dict()) == entry


def test_batch_status_percent():
    assert BatchStatus(current=1, total=4).percent == 25
    assert BatchStatus(current=0, total=0).percent == 0


def test_channel_page_defaults():
    page = ChannelPage()
    assert page.videos == []
    assert page.has_more is False
    assert page.reachable is False
