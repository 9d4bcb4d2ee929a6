"""
Telegram handlers: the application shell around the resolvers.
"""

import html
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from aiogram import Dispatcher
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from ai import InsightGenerator
from errors import (
    BATCH_BLOCKED,
    CHANNEL_UNREACHABLE,
    INVALID_PLAYLIST,
    INVALID_USERNAME,
    NETWORK_ERROR,
    PLAYLIST_NOT_FOUND,
    RESULT_EXPIRED,
    VIDEO_NOT_FOUND,
    channel_not_found,
    error_manager,
)
from managers import DownloadManager, HistoryManager
from models import BatchStatus, DownloadMode, MediaKind, VideoInfo
from resolvers import MediaResolver
from state import (
    AppState,
    advance_batch,
    append_videos,
    attach_insights,
    finish_batch,
    select_mode,
    set_url,
    show_error,
    show_video,
    show_videos,
    start_batch,
    start_processing,
)
from utils import (
    extract_playlist_id,
    extract_username,
    find_first_url,
    format_duration,
    format_tags,
    sanitize_user_input,
)

logger = logging.getLogger(__name__)

MAX_ITEM_BUTTONS = 10
MAX_LISTED_TITLES = 15

MODE_LABELS = {
    DownloadMode.SINGLE: "Tải Đơn",
    DownloadMode.CHANNEL: "Kênh TikTok",
    DownloadMode.LIST: "Playlist",
}


class BotHandlers:
    """Registers bot commands and the link-driven resolution flow."""

    def __init__(
        self,
        dp: Dispatcher,
        resolver: MediaResolver,
        insights: InsightGenerator,
        download_manager: DownloadManager,
        history: HistoryManager,
    ):
        self.dp = dp
        self.resolver = resolver
        self.insights = insights
        self.download_manager = download_manager
        self.history = history
        self.states: Dict[int, AppState] = {}
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.dp.message.register(self.handle_start, Command(commands=["start"]))
        self.dp.message.register(self.handle_help, Command(commands=["help"]))
        self.dp.message.register(self.handle_history, Command(commands=["history"]))
        self.dp.message.register(self.handle_clear_history, Command(commands=["clear"]))
        self.dp.message.register(self.handle_url_message)
        self.dp.callback_query.register(
            self.handle_mode_callback,
            lambda callback: (callback.data or "").startswith("mode:"),
        )
        self.dp.callback_query.register(
            self.handle_download_callback,
            lambda callback: (callback.data or "").startswith(("dl:", "item:")),
        )
        self.dp.callback_query.register(
            self.handle_batch_callback,
            lambda callback: callback.data == "batch",
        )
        self.dp.callback_query.register(
            self.handle_more_callback,
            lambda callback: callback.data == "more",
        )

    def get_state(self, chat_id: int) -> AppState:
        return self.states.get(chat_id, AppState())

    async def handle_start(self, message: Message) -> None:
        username = message.from_user.username if message.from_user else None
        text = (
            f"👋 Xin chào, {html.escape(username or 'bạn')}!\n\n"
            "⚡ <b>ULTRADOWN AI</b>: xoá watermark TikTok/Douyin, tải YouTube, IG, FB siêu nhanh.\n\n"
            "Gửi cho mình:\n"
            "• link video để tải một video\n"
            "• @username hoặc link profile TikTok để quét cả kênh\n"
            "• link YouTube có <code>list=</code> để quét playlist"
        )
        await message.answer(text, parse_mode="HTML")

    async def handle_help(self, message: Message) -> None:
        text = (
            "📖 <b>Cách sử dụng</b>\n\n"
            "1. Gửi link hoặc @username. Chế độ được nhận diện tự động.\n"
            "2. Đổi chế độ bằng các nút <b>Tải Đơn / Kênh TikTok / Playlist</b> nếu cần.\n"
            "3. Bấm nút tải video, tải âm thanh hoặc <b>Tải tất cả</b>.\n\n"
            "/history: lịch sử tải\n"
            "/clear: xoá lịch sử"
        )
        await message.answer(text, parse_mode="HTML")

    async def handle_history(self, message: Message) -> None:
        if not self.history.entries:
            await message.answer("📭 Lịch sử tải trống.")
            return

        lines = ["🕘 <b>Lịch sử tải</b>"]
        for entry in self.history.entries:
            saved_at = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%d/%m %H:%M")
            lines.append(
                f"• {saved_at} · {entry.video.platform.display_name} · {html.escape(entry.video.title[:60])}"
            )
        await message.answer("\n".join(lines), parse_mode="HTML")

    async def handle_clear_history(self, message: Message) -> None:
        await self.history.clear()
        await message.answer("🗑️ Đã xoá lịch sử tải.")

    async def handle_url_message(self, message: Message) -> None:
        text = sanitize_user_input(message.text or "")
        if not text or text.startswith("/"):
            return
        text = find_first_url(text) or text

        chat_id = message.chat.id
        self.states[chat_id] = set_url(self.get_state(chat_id), text)
        await self._process(chat_id, message)

    async def handle_mode_callback(self, callback: CallbackQuery) -> None:
        try:
            mode = DownloadMode((callback.data or "").split(":", 1)[1])
        except (IndexError, ValueError):
            await callback.answer("Dữ liệu nút không hợp lệ.", show_alert=True)
            return

        chat_id = callback.message.chat.id
        state = self.get_state(chat_id)
        if not state.url:
            await callback.answer(RESULT_EXPIRED, show_alert=True)
            return

        self.states[chat_id] = select_mode(state, mode)
        await callback.answer(f"Chế độ: {MODE_LABELS[mode]}")
        await self._process(chat_id, callback.message)

    async def handle_download_callback(self, callback: CallbackQuery) -> None:
        chat_id = callback.message.chat.id
        video, kind = self._pick_video(self.get_state(chat_id), callback.data or "")
        if video is None:
            await callback.answer(RESULT_EXPIRED, show_alert=True)
            return

        await callback.answer("⏳ Đang chuẩn bị tệp...")
        try:
            await self.download_manager.deliver(callback.message, video, kind)
        except Exception as error:
            logger.exception("Delivery failed for %s", video.id)
            await callback.message.answer(error_manager.to_user_message(error), parse_mode="HTML")

    async def handle_batch_callback(self, callback: CallbackQuery) -> None:
        chat_id = callback.message.chat.id
        state = self.get_state(chat_id)
        if state.is_batch_running:
            await callback.answer("Đang tải hàng loạt, vui lòng chờ.", show_alert=True)
            return
        if not state.videos:
            await callback.answer(RESULT_EXPIRED, show_alert=True)
            return

        await callback.answer(f"Bắt đầu gửi {len(state.videos)} link tải.")
        self.states[chat_id] = start_batch(state)
        progress_msg = await callback.message.answer(f"☁️ Tải hàng loạt: 0/{len(state.videos)}")
        message = callback.message

        async def open_link(video: VideoInfo, url: str) -> bool:
            try:
                await message.answer(
                    f'⬇️ <a href="{html.escape(url, quote=True)}">{html.escape(video.title[:80] or video.id)}</a>',
                    parse_mode="HTML",
                )
            except TelegramAPIError as error:
                logger.warning("Could not send batch link for %s: %s", video.id, error)
                return False
            return True

        async def on_progress(status: BatchStatus) -> None:
            self.states[chat_id] = advance_batch(self.get_state(chat_id), status)
            try:
                await progress_msg.edit_text(
                    f"☁️ Tải hàng loạt: Video {status.current}/{status.total} ({status.percent}%)"
                )
            except TelegramAPIError:
                logger.debug("Progress message edit failed", exc_info=True)

        try:
            opened = await self.download_manager.run_batch(state.videos, open_link, on_progress)
        except Exception as error:
            logger.exception("Batch download failed")
            await message.answer(error_manager.to_user_message(error), parse_mode="HTML")
            return
        finally:
            self.states[chat_id] = finish_batch(self.get_state(chat_id))

        if opened < len(state.videos):
            await message.answer(BATCH_BLOCKED)
        else:
            await message.answer("✅ Đã hoàn tất gửi yêu cầu tải!")

    async def handle_more_callback(self, callback: CallbackQuery) -> None:
        chat_id = callback.message.chat.id
        state = self.get_state(chat_id)
        if not state.has_more or not state.channel_username:
            await callback.answer("Không còn video nào.", show_alert=True)
            return

        await callback.answer("Đang tải thêm...")
        page = await self.resolver.fetch_channel_videos(state.channel_username, state.next_cursor)
        state = append_videos(state, page.videos, page.next_cursor, page.has_more)
        self.states[chat_id] = state
        await self._render(callback.message, state)

    async def _process(self, chat_id: int, message: Any) -> None:
        state = start_processing(self.get_state(chat_id))
        self.states[chat_id] = state
        try:
            if state.mode == DownloadMode.SINGLE:
                state = await self._process_single(state)
            elif state.mode == DownloadMode.CHANNEL:
                state = await self._process_channel(state, message)
            else:
                state = await self._process_playlist(state, message)
        except Exception:
            logger.exception("Processing failed for %s", state.url)
            state = show_error(state, NETWORK_ERROR)

        self.states[chat_id] = state
        await self._render(message, state)

    async def _process_single(self, state: AppState) -> AppState:
        video = await self.resolver.analyze_link(state.url)
        if video is None:
            return show_error(state, VIDEO_NOT_FOUND)

        state = show_video(state, video)
        insights = await self.insights.get_ai_insights(video.title)
        if insights is not None:
            state = attach_insights(state, insights)
        return state

    async def _process_channel(self, state: AppState, message: Any) -> AppState:
        username = extract_username(state.url)
        if not username:
            return show_error(state, INVALID_USERNAME)

        await message.answer(f"🔎 Đang quét kênh @{html.escape(username)}...", parse_mode="HTML")
        page = await self.resolver.fetch_channel_videos(username)
        if page.videos:
            return show_videos(
                state,
                page.videos,
                channel_username=username.lstrip("@"),
                next_cursor=page.next_cursor,
                has_more=page.has_more,
            )
        if not page.reachable:
            return show_error(state, CHANNEL_UNREACHABLE)
        return show_error(state, channel_not_found(username))

    async def _process_playlist(self, state: AppState, message: Any) -> AppState:
        playlist_id = extract_playlist_id(state.url)
        if not playlist_id:
            return show_error(state, INVALID_PLAYLIST)

        await message.answer("🔎 Đang quét Playlist YouTube...")
        videos = await self.resolver.fetch_playlist_videos(playlist_id)
        if not videos:
            return show_error(state, PLAYLIST_NOT_FOUND)
        return show_videos(state, videos)

    @staticmethod
    def _pick_video(state: AppState, data: str) -> Tuple[Optional[VideoInfo], MediaKind]:
        parts = data.split(":", 1)
        if len(parts) != 2:
            return None, MediaKind.VIDEO

        prefix, value = parts
        if prefix == "dl":
            try:
                kind = MediaKind(value)
            except ValueError:
                return None, MediaKind.VIDEO
            return state.current_video, kind

        try:
            index = int(value)
        except ValueError:
            return None, MediaKind.VIDEO
        if 0 <= index < len(state.videos):
            return state.videos[index], MediaKind.VIDEO
        return None, MediaKind.VIDEO

    async def _render(self, message: Any, state: AppState) -> None:
        if state.error:
            await message.answer(state.error, parse_mode="HTML", reply_markup=self._mode_keyboard(state))
        elif state.current_video is not None:
            await message.answer(
                self._format_video(state.current_video),
                parse_mode="HTML",
                reply_markup=self._video_keyboard(state),
            )
        elif state.videos:
            await message.answer(
                self._format_listing(state),
                parse_mode="HTML",
                reply_markup=self._listing_keyboard(state),
            )

    @staticmethod
    def _format_video(video: VideoInfo) -> str:
        lines = [
            f"✅ Đã nhận diện: <b>{video.platform.display_name}</b>",
            f"🎬 <b>{html.escape(video.title)}</b>",
            f"👤 {html.escape(video.author)}",
        ]
        if video.duration and video.duration != "0":
            lines.append(f"⏱️ {format_duration(video.duration)}")
        if video.ai_insights is not None:
            lines.append("")
            lines.append(f"🤖 {html.escape(video.ai_insights.summary)}")
            tags = format_tags(video.ai_insights.tags)
            if tags:
                lines.append(html.escape(tags))
        return "\n".join(lines)

    @staticmethod
    def _format_listing(state: AppState) -> str:
        lines = [f"📂 Tìm thấy <b>{len(state.videos)}</b> video."]
        for index, video in enumerate(state.videos[:MAX_LISTED_TITLES], start=1):
            lines.append(f"{index}. {html.escape(video.title[:70])}")
        hidden = len(state.videos) - MAX_LISTED_TITLES
        if hidden > 0:
            lines.append(f"… và {hidden} video khác")
        return "\n".join(lines)

    @staticmethod
    def _mode_row(state: AppState) -> List[InlineKeyboardButton]:
        return [
            InlineKeyboardButton(
                text=("• " if mode == state.mode else "") + label,
                callback_data=f"mode:{mode.value}",
            )
            for mode, label in MODE_LABELS.items()
        ]

    def _mode_keyboard(self, state: AppState) -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(inline_keyboard=[self._mode_row(state)])

    def _video_keyboard(self, state: AppState) -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(
            inline_keyboard=[
                [
                    InlineKeyboardButton(text="🎬 Tải video", callback_data="dl:video"),
                    InlineKeyboardButton(text="🎵 Tải âm thanh", callback_data="dl:audio"),
                ],
                self._mode_row(state),
            ]
        )

    def _listing_keyboard(self, state: AppState) -> InlineKeyboardMarkup:
        item_buttons = [
            InlineKeyboardButton(text=str(index + 1), callback_data=f"item:{index}")
            for index in range(min(len(state.videos), MAX_ITEM_BUTTONS))
        ]
        rows: List[List[InlineKeyboardButton]] = [
            item_buttons[start:start + 5] for start in range(0, len(item_buttons), 5)
        ]
        actions = [InlineKeyboardButton(text="⬇️ Tải tất cả", callback_data="batch")]
        if state.has_more:
            actions.append(InlineKeyboardButton(text="➕ Tải thêm", callback_data="more"))
        rows.append(actions)
        rows.append(self._mode_row(state))
        return InlineKeyboardMarkup(inline_keyboard=rows)
