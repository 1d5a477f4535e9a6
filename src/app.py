"""Application entry point for the topicbridge bridge."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import inspect
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_destination import TelegramDestination
from client import build_client, start_bot
from core.config import validate_credentials
from core.errors import ConfigurationError
from core.orchestrator import ForwardingOrchestrator
from core.ports import SourceClientPort
from core.settings_gate import DEFAULT_FLAGS, parse_flag

NAME = "TOPICBRIDGE"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/topicbridge.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # Telethon is chatty at INFO; keep it to warnings unless we debug.
    if level > logging.DEBUG:
        logging.getLogger("telethon").setLevel(logging.WARNING)


async def _load_source_client() -> SourceClientPort:
    """Import and call the configured ``module:callable`` source factory."""

    path = settings.SOURCE_CLIENT_FACTORY
    if not path or ":" not in path:
        raise ConfigurationError("source.client_factory must be set as 'module:callable'")
    module_name, _, attr = path.partition(":")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"Cannot load source client factory {path!r}: {exc}") from exc

    source = factory(settings.SOURCE_OPTIONS)
    if inspect.isawaitable(source):
        source = await source
    return source


async def _serve(channel_id: int, bot_token: str) -> None:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()

    source = await _load_source_client()
    client = build_client()
    await start_bot(client, bot_token)

    bridge = ForwardingOrchestrator(
        settings.bridge_config(channel_id),
        storage,
        source,
        TelegramDestination(client),
        settings_defaults=settings.DEFAULT_SETTINGS,
    )
    await bridge.start()
    consumer = asyncio.create_task(bridge.run())

    LOGGER.info("Client connected. Bridging into chat %s...", channel_id)
    try:
        await client.run_until_disconnected()
    finally:
        await bridge.shutdown()
        await consumer
        if client.is_connected():
            await client.disconnect()


def _run() -> None:
    _print_banner()
    _configure_logging()

    LOGGER.info("Starting topicbridge")

    load_dotenv()
    bot_token = os.getenv("BOT_TOKEN")
    try:
        channel_id = validate_credentials(bot_token, settings.CHANNEL_ID)
        asyncio.run(_serve(channel_id, bot_token))
    except ConfigurationError as exc:
        # Only the bridge is affected; leave it disabled until reconfigured.
        LOGGER.error("Bridge disabled: %s", exc)
    except KeyboardInterrupt:
        LOGGER.info("Interrupted, bridge stopped")


def _show_settings() -> None:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    stored = asyncio.run(storage.list_settings())
    for key, (default, description) in DEFAULT_FLAGS.items():
        value = settings.DEFAULT_SETTINGS.get(key, default)
        if key in stored:
            try:
                value = parse_flag(stored[key])
            except ValueError:
                pass
        print(f"{key:<20} {'on ' if value else 'off'}  {description}")


def _show_mappings() -> None:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    mappings = asyncio.run(storage.list_mappings())
    if not mappings:
        print("No conversations are bridged yet.")
        return
    for index, mapping in enumerate(mappings, start=1):
        print(
            f"{index}. {mapping.kind.value} | {mapping.display_name} | "
            f"{mapping.source_conversation_id} -> topic {mapping.destination_thread_id}"
        )


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="topicbridge")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bridge")
    subparsers.add_parser("settings", help="Print the persisted bridge settings")
    subparsers.add_parser("mappings", help="Print bridged conversations and their topics")

    args = parser.parse_args(argv)
    if args.command == "settings":
        _show_settings()
        return
    if args.command == "mappings":
        _show_mappings()
        return
    _run()


if __name__ == "__main__":
    main()
