from __future__ import annotations

import asyncio
import logging
import signal

from aiohttp import web
from dotenv import load_dotenv

from .bot import SentinelBot
from .config import load_settings
from .logging_setup import setup_logging

log = logging.getLogger("sentinel.render")


def build_health_app(bot: SentinelBot) -> web.Application:
    app = web.Application()

    async def health(_: web.Request) -> web.Response:
        stats = bot.stats
        return web.json_response(
            {
                "ok": True,
                "service": "sentinel",
                "ready": bot.is_ready(),
                "instance_id": bot.instance_id,
                "last_sync_at": stats.last_sync_at,
                "uptime_seconds": stats.uptime_seconds(),
            }
        )

    app.router.add_get("/", health)
    app.router.add_get("/healthz", health)
    return app


async def _start_web_server(bot: SentinelBot, port: int) -> web.AppRunner:
    runner = web.AppRunner(build_health_app(bot))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    log.info("Health server listening on 0.0.0.0:%s", port)
    return runner


async def main_async() -> None:
    load_dotenv()
    settings = load_settings()
    setup_logging(settings.log_level)

    bot = SentinelBot(settings)
    runner = await _start_web_server(bot, settings.port)

    # Hosting platforms send SIGTERM on deploy/stop
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows
            pass

    async with bot:
        bot_task = asyncio.create_task(bot.start(settings.token), name="sentinel-bot")
        stop_task = asyncio.create_task(stop_event.wait(), name="sentinel-stop")
        done, pending = await asyncio.wait({bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if stop_event.is_set():
            log.info("Shutdown signal received; closing bot...")
            await bot.close()

        for t in pending:
            t.cancel()
        if bot_task in done and not bot_task.cancelled() and bot_task.exception() is not None:
            log.error("Bot stopped with an error: %s", bot_task.exception())

    await runner.cleanup()


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
