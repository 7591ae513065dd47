from __future__ import annotations

import asyncio
import logging
import signal

from dotenv import load_dotenv

from .bot import RepoBridgeBot
from .config import load_settings
from .errors import BridgeError
from .logging_setup import setup_logging
from .permissions import PermissionsStore
from .provisioning.store import StructureStore

log = logging.getLogger("repobridge.main")


async def main_async() -> None:
    load_dotenv()
    settings = load_settings()
    setup_logging(settings.log_level)

    permissions = PermissionsStore(settings.permissions_path)
    structures = StructureStore(settings.structure_path)
    try:
        config = permissions.load()
        doc = await structures.load()
    except BridgeError as e:
        log.critical("Startup configuration error: %s", e.user_message)
        raise SystemExit(1) from e
    log.info(
        "Loaded %d permission entries and %d categories / %d roles",
        len(config.per_guild), len(doc.categories), len(doc.roles),
    )

    bot = RepoBridgeBot(settings, permissions, structures)

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows
            pass

    async with bot:
        bot_task = asyncio.create_task(bot.start(settings.token), name="repobridge-bot")
        stop_task = asyncio.create_task(stop_event.wait(), name="repobridge-stop")
        done, pending = await asyncio.wait({bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if stop_event.is_set():
            log.info("Shutdown signal received; closing bot...")
            await bot.close()

        for t in pending:
            t.cancel()
        if bot_task in done:
            bot_task.result()


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
