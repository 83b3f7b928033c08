"""
CLI entrypoint that runs the location fusion service until interrupted.

It loads the Dynaconf configuration, builds the enabled providers and the
fusion hub, and wires the sleep monitor to force a refresh after resume.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import signal
from collections.abc import Sequence
from pathlib import Path

import httpx

from .core.config import ConfigError, ConfigService, LoggingSettings
from .core.hub import FusionHub
from .core.orchestrator import Orchestrator
from .modules import LocationRefresher, SleepResumeMonitor

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file:
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def configure_logging(level: str, settings: LoggingSettings | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric_level)
    if settings is not None and settings.file is not None:
        _ensure_rotating_file_handler(
            settings.file.expanduser(),
            max_mb=settings.max_mb,
            backup_count=settings.backup_count,
        )


async def run_service(config_service: ConfigService) -> None:
    """Build the hub and modules from configuration and run until a signal arrives."""

    snapshot = config_service.snapshot
    async with httpx.AsyncClient() as http_client:
        providers = snapshot.build_providers(http_client=http_client)
        if not providers:
            LOGGER.warning("No location providers enabled; the estimate will stay unknown.")
        hub = FusionHub(
            providers,
            sweep_interval=snapshot.hub.sweep_interval_seconds,
            subscriber_queue_size=snapshot.hub.subscriber_queue_size,
        )
        orchestrator = Orchestrator(hub=hub)

        refresher = LocationRefresher(hub)
        await orchestrator.add_module(refresher, config_service.module_config_for(refresher))
        monitor = SleepResumeMonitor(on_resume=refresher.refresh)
        await orchestrator.add_module(monitor, config_service.module_config_for(monitor))

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

        await orchestrator.start()
        LOGGER.info(
            "locus running for key %s with providers %s. Press Ctrl+C to stop.",
            snapshot.location.key,
            hub.providers,
        )
        try:
            await stop_event.wait()
        finally:
            await orchestrator.stop()


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig_name: str) -> None:
        if not stop_event.is_set():
            LOGGER.info("Received %s – beginning graceful shutdown.", sig_name)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown, sig.name)


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Best current location service.")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: repo config/).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Python logging level (default: logging.level from config, else INFO).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config_service = ConfigService(config_dir=args.config_dir)
    except ConfigError as exc:
        configure_logging(args.log_level or "INFO")
        LOGGER.error("Configuration error: %s", exc)
        return 2
    settings = config_service.snapshot.logging
    configure_logging(args.log_level or settings.level, settings)
    try:
        asyncio.run(run_service(config_service))
    except KeyboardInterrupt:  # pragma: no cover - interactive shutdown
        LOGGER.info("Interrupted.")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution
    raise SystemExit(main())
