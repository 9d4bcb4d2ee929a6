"""
Entry point for the UltraDown Telegram bot.
"""

import asyncio
import logging
import sys

import aiohttp
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.fsm.storage.memory import MemoryStorage
from aiohttp import web

from ai import GeminiGenerator, InsightGenerator
from config import (
    GEMINI_API_KEY,
    HEALTH_HOST,
    HEALTH_PORT,
    HISTORY_FILE,
    LOG_FORMAT,
    LOG_LEVEL,
    require_bot_token,
)
from errors import setup_logging
from handlers import BotHandlers
from managers import DownloadManager, HistoryManager
from resolvers import MediaResolver

shutdown_event = asyncio.Event()


def create_health_app(history: HistoryManager) -> web.Application:
    """`/` and `/health` report liveness plus the number of stored history entries."""

    async def health(request: web.Request) -> web.Response:
        return web.json_response(
            {"status": "ok", "service": "ultradown", "history": len(history.entries)}
        )

    app = web.Application()
    app.router.add_get("/", health)
    app.router.add_get("/health", health)
    return app


async def start_health_server(history: HistoryManager) -> None:
    runner = web.AppRunner(create_health_app(history))
    await runner.setup()
    await web.TCPSite(runner, host=HEALTH_HOST, port=HEALTH_PORT).start()
    logging.getLogger(__name__).info("Health endpoint listening on %s:%s", HEALTH_HOST, HEALTH_PORT)

    try:
        await shutdown_event.wait()
    finally:
        await runner.cleanup()


async def main() -> None:
    logger = setup_logging(level=LOG_LEVEL, format_string=LOG_FORMAT)
    logger.info("Starting UltraDown bot")
    if not GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set: AI insights and playlist scans are disabled")

    bot = None
    session = None
    health_server_task = None
    try:
        bot = Bot(token=require_bot_token(), default=DefaultBotProperties(parse_mode="HTML"))
        dispatcher = Dispatcher(storage=MemoryStorage())
        session = aiohttp.ClientSession()

        history = HistoryManager(path=HISTORY_FILE)
        await history.load()
        logger.info("Loaded %s history entries from %s", len(history.entries), HISTORY_FILE)

        generator = GeminiGenerator()
        resolver = MediaResolver(session=session, generator=generator)
        BotHandlers(
            dp=dispatcher,
            resolver=resolver,
            insights=InsightGenerator(generator),
            download_manager=DownloadManager(resolver=resolver, history=history, session=session),
            history=history,
        )

        health_server_task = asyncio.create_task(start_health_server(history))
        await dispatcher.start_polling(bot)
    except Exception:
        logging.getLogger(__name__).exception("Fatal startup/runtime error")
        sys.exit(1)
    finally:
        shutdown_event.set()
        if health_server_task is not None:
            try:
                await health_server_task
            except Exception:
                logging.getLogger(__name__).debug("Health server shutdown failed", exc_info=True)
        if session is not None:
            await session.close()
        if bot is not None:
            await bot.session.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
