import asyncio
import logging
import logging.handlers
import signal
from pathlib import Path

from dotenv import load_dotenv

from core.config import ConfigError, load_settings
from core.mappings import UserMappingStore
from transports.discord_bot import run_discord_bot

LOG_FORMAT = "%(asctime)s %(levelname)s :: %(message)s"


def setup_logging(log_dir: Path, level: str) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_dir / "bot.log", when="midnight", backupCount=14, encoding="utf-8"
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    logging.getLogger().addHandler(file_handler)


async def main():
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigError as exc:
        raise SystemExit(f"configuration error: {exc}")

    setup_logging(settings.log_dir, settings.log_level)
    mappings = UserMappingStore(settings.mappings_path)

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    discord_task = asyncio.create_task(run_discord_bot(settings, mappings))
    stop_waiter = asyncio.create_task(stop_event.wait())
    done, _ = await asyncio.wait({discord_task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)

    stop_waiter.cancel()
    if discord_task not in done:
        discord_task.cancel()
    try:
        await discord_task
    except asyncio.CancelledError:
        pass


if __name__ == "__main__":
    asyncio.run(main())
