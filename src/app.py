"""Application entry point for the WhatsApp intake service."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings as settings_module
from adapters.bridge_client import BridgeClient
from adapters.command_dispatcher import CommandDispatcher
from adapters.sqlite_conversation_state import SQLiteConversationState
from adapters.sqlite_message_store import SQLiteMessageStore
from adapters.sqlite_user_store import SQLiteUserStore
from core.admin import AdminPrivilegeCheck
from core.dedup import DedupCache
from core.models import IntakeStats
from core.outbound import OutboundGate
from core.poller import IntakePoller
from core.rate_limit import RateLimitLedger
from settings import Settings

NAME = "WA INTAKE"
FONT = "small"


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


def _configure_logging(config: dict) -> None:
    config = config or {}
    if not config.get("enabled", True):
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
        path = file_cfg.get("path", "logs/intake.log")
        if not os.path.isabs(path):
            path = os.path.join(settings_module.PROJECT_ROOT, path)
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


def build_poller(config: Settings, bridge: BridgeClient) -> IntakePoller:
    """Wire adapters and core components; every piece of state is owned here."""

    os.makedirs(os.path.dirname(config.store.state_db_path) or ".", exist_ok=True)

    stats = IntakeStats()
    ledger = RateLimitLedger(config.rate_limit)
    admin = AdminPrivilegeCheck(SQLiteUserStore(config.store.users_db_path), config.admin)
    state = SQLiteConversationState(
        config.store.state_db_path,
        max_message_age=timedelta(minutes=config.intake.max_message_age_minutes),
    )
    state.init_db()
    removed = state.cleanup_processed(config.dedup.ttl_days)
    logging.getLogger(__name__).info("Dedup cleanup removed %s processed ids", removed)

    gate = OutboundGate(bridge, ledger, admin, stats)
    dispatcher = CommandDispatcher(gate, config.intake.command_prefixes)
    return IntakePoller(
        store=SQLiteMessageStore(config.store.messages_db_path, config.store.fetch_limit),
        dedup=DedupCache(state),
        ledger=ledger,
        admin=admin,
        dispatcher=dispatcher,
        config=config.intake,
        stats=stats,
    )


async def _serve(config: Settings) -> None:
    logger = logging.getLogger(__name__)
    bridge = BridgeClient(
        config.bridge.url,
        send_timeout=config.bridge.send_timeout_seconds,
        ping_timeout=config.bridge.ping_timeout_seconds,
    )
    if not await bridge.ping():
        raise RuntimeError(f"WhatsApp bridge is not available at {bridge.base_url}")

    poller = build_poller(config, bridge)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not supported on every platform; Ctrl+C still raises there.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    await poller.start()
    logger.info("Connected to bridge at %s. Waiting for messages...", bridge.base_url)
    try:
        await stop_event.wait()
    finally:
        await poller.shutdown()
        logger.info("Stopped. Final stats: %s", poller.stats.as_dict())


async def _ping(config: Settings) -> bool:
    bridge = BridgeClient(config.bridge.url, ping_timeout=config.bridge.ping_timeout_seconds)
    return await bridge.ping()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="wa-intake")
    parser.add_argument("--config", help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start polling the bridge for new messages")
    subparsers.add_parser("ping", help="Check that the bridge answers")

    args = parser.parse_args(argv)
    config = settings_module.load_settings(args.config)
    _configure_logging(config.logging)

    if args.command == "ping":
        alive = asyncio.run(_ping(config))
        print("Bridge is up" if alive else "Bridge is not reachable")
        return 0 if alive else 1

    _print_banner()
    logging.getLogger(__name__).info("Starting intake service")
    asyncio.run(_serve(config))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
