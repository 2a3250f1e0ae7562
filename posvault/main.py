"""
Main entry point for the posvault backup daemon
"""

import asyncio
import signal
import sys
from typing import TYPE_CHECKING

from posvault import __version__
from posvault.config import SecureSettingsManager, get_settings
from posvault.service import BackupService, build_service
from posvault.utils import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from posvault.config.settings import Settings


def validate_configuration(
    settings: "Settings",
    secure_settings: SecureSettingsManager,
    logger: "BoundLogger",
) -> None:
    """Log the effective configuration and warn about weak setups."""
    if not secure_settings.get_encryption_key():
        logger.warning(
            "No backup encryption key configured, "
            "encrypted backups will need a password"
        )

    for directory in (settings.data_dir, settings.backup_dir):
        if not directory.exists():
            logger.info("Creating directory", path=str(directory))
            directory.mkdir(parents=True, exist_ok=True)

    logger.info("Configuration validated successfully")
    logger.info("Environment", env=settings.environment)
    logger.info("Data directory", path=str(settings.data_dir))


def install_signal_handlers(stop_event: asyncio.Event, logger: "BoundLogger") -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.debug("Signal handlers not supported on this platform")
            return


async def run_daemon(service: BackupService, logger: "BoundLogger") -> None:
    """Run the backup scheduler until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    install_signal_handlers(stop_event, logger)

    await service.start()
    logger.info("Backup scheduler status", **service.scheduler.status().to_dict())

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down backup scheduler...")
        await service.stop()
        logger.info("All services stopped")


async def main() -> None:
    """Main application entry point."""
    settings = get_settings()
    setup_logging(settings)
    logger = get_logger("main")

    logger.info("Starting posvault", version=__version__)

    try:
        secure_settings = SecureSettingsManager(settings)
        validate_configuration(settings, secure_settings, logger)
        service = build_service(settings)
        logger.info("Backends available", backends=service.registry.ids())
        await run_daemon(service, logger)
    except Exception as exc:
        logger.error("Failed to start backup daemon", error=str(exc), exc_info=True)
        sys.exit(1)


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBackup daemon stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
