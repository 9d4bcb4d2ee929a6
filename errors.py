"""
Error formatting, localized messages and logging utilities.
"""

import html
import logging
from typing import Optional

INVALID_USERNAME = "❌ Vui lòng nhập @username hoặc link profile TikTok hợp lệ."
INVALID_PLAYLIST = "❌ Link không chứa Playlist ID hợp lệ (?list=...)"
VIDEO_NOT_FOUND = "❌ Không thể lấy dữ liệu video. Hãy thử lại hoặc dùng link khác."
PLAYLIST_NOT_FOUND = "❌ Không thể lấy danh sách video. Playlist có thể bị ẩn."
CHANNEL_UNREACHABLE = "⚠️ Không kết nối được máy chủ quét kênh. Hãy thử lại sau."
NETWORK_ERROR = "⚠️ Đã có lỗi xảy ra. Hãy kiểm tra kết nối mạng."
YOUTUBE_LINK_FAILED = "❌ Lỗi lấy link tải YouTube."
BATCH_BLOCKED = "🚫 Không gửi được link tải. Hãy cho phép bot nhắn tin cho bạn rồi thử lại."
RESULT_EXPIRED = "Kết quả đã hết hạn. Hãy gửi lại link."


def channel_not_found(username: str) -> str:
    return f"❌ Không tìm thấy video nào của @{html.escape(username)}. Profile có thể riêng tư."


def setup_logging(
    level: str = "INFO",
    format_string: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
) -> logging.Logger:
    """Configure root logging once and return module logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)
    return logging.getLogger(__name__)


class ErrorManager:
    """Convert internal exceptions to compact user-facing messages."""

    def to_user_message(self, error: Exception, url: Optional[str] = None) -> str:
        msg = str(error).lower()

        if "too large" in msg or "max_filesize" in msg:
            return (
                "❌ <b>Tệp quá lớn để gửi qua Telegram.</b>\n"
                "Hãy mở link tải trực tiếp."
            )

        if "timeout" in msg or "timed out" in msg:
            return (
                "⏱️ <b>Hết thời gian chờ.</b>\n"
                "Hãy thử lại sau ít phút."
            )

        if "forbidden" in msg or "blocked" in msg:
            return BATCH_BLOCKED

        if "private" in msg or "not available" in msg:
            return (
                "❌ <b>Video không khả dụng.</b>\n"
                "Có thể video đã bị xoá, ở chế độ riêng tư hoặc bị giới hạn khu vực."
            )

        if "cannot connect" in msg or "connection" in msg or "network" in msg:
            return NETWORK_ERROR

        safe_details = html.escape(str(error))[:350]
        return (
            "⚠️ <b>Không thể xử lý yêu cầu.</b>\n"
            f"<code>{safe_details}</code>"
        )


error_manager = ErrorManager()
