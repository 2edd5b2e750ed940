"""Main entry point for the PondControl scheduler."""

import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

from pondcontrol.config import Config, ConfigError
from pondcontrol.remote import ConnectivityMonitor, FirebaseRestStore, InMemoryRemoteStore, RemoteStore
from pondcontrol.session import PondSession
from pondcontrol.state import AutoModeSetting, JsonFileStorage
from version import __version__


shutdown_event = asyncio.Event()


def setup_logging(config: Config):
    """Set up console and rotating file logging."""
    log_config = config.logging_config
    log_level = getattr(logging, log_config.get('level', 'INFO'))

    log_dir = Path('logs')
    log_dir.mkdir(exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(log_level)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    max_bytes = int(log_config.get('max_file_size_mb', 10) * 1024 * 1024)
    backup_count = log_config.get('backup_count', 5)

    file_handler = RotatingFileHandler(
        log_dir / 'pondcontrol.log',
        maxBytes=max_bytes,
        backupCount=backup_count
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logging.info("Logging initialized")


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logging.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_event.set()


def build_store(config: Config) -> RemoteStore:
    """Create the remote store selected by ``remote.backend``."""
    remote = config.remote
    if remote['backend'] == 'firebase':
        return FirebaseRestStore(
            database_url=remote['database_url'],
            auth_token=remote.get('auth_token'),
            timeout_seconds=float(remote['timeout_seconds']),
            poll_interval_seconds=float(remote['poll_interval_seconds'])
        )
    logging.getLogger(__name__).warning("Using in-memory remote store; state is not shared or kept")
    return InMemoryRemoteStore()


async def main():
    """Main entry point for the application."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig, None)

    try:
        config = Config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info(f"PondControl Scheduler v{__version__}")
    logger.info("=" * 60)

    store = build_store(config)
    storage = JsonFileStorage(config.storage['state_file'])
    auto_mode = AutoModeSetting(default=config.auto_mode_enabled, storage=storage)
    connectivity = ConnectivityMonitor(
        store=store,
        check_interval_seconds=float(config.connectivity['check_interval_seconds']),
        storage=storage
    )

    sessions: List[PondSession] = [
        PondSession(
            pond_id=pond_id,
            store=store,
            storage=storage,
            connectivity=connectivity,
            auto_mode=auto_mode,
            timezone=config.timezone,
            check_interval_seconds=float(config.scheduler['check_interval_seconds'])
        )
        for pond_id in config.ponds
    ]

    logger.info(f"Ponds: {', '.join(config.ponds)}")
    logger.info(f"Auto mode: {'ENABLED' if auto_mode.enabled else 'disabled'}")

    try:
        await connectivity.check_now()
        await connectivity.start()
        for session in sessions:
            await session.start()

        await shutdown_event.wait()

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down...")
        for session in sessions:
            await session.stop()
        await connectivity.stop()
        await store.close()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except Exception:
        sys.exit(1)
