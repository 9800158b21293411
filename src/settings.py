"""Configuration loading for the intake service.

User-editable settings (rate limits, polling, logging) live in a single JSON
file for quick edits without touching Python. Deployment specific values
(bridge URL, database paths) can be overridden from the environment or a
``.env`` file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional

from dotenv import load_dotenv

from core.config import AdminConfig, DedupConfig, IntakeConfig, RateLimitConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Settings are loaded from config.json at the project root unless a path is
# passed explicitly (or CONFIG_PATH is set).
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

DATA_DIR = os.path.join(PROJECT_ROOT, "data")


@dataclass(frozen=True)
class BridgeSettings:
    url: str = "http://127.0.0.1:8080"
    send_timeout_seconds: float = 15.0
    ping_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class StoreSettings:
    messages_db_path: str = os.path.join(PROJECT_ROOT, "whatsapp-bridge", "store", "messages.db")
    users_db_path: str = os.path.join(DATA_DIR, "bot.db")
    state_db_path: str = os.path.join(DATA_DIR, "conversation-state.db")
    fetch_limit: int = 100


@dataclass(frozen=True)
class Settings:
    bridge: BridgeSettings = field(default_factory=BridgeSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    intake: IntakeConfig = field(default_factory=IntakeConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    logging: dict = field(default_factory=dict)


def _load_json_config(path: str) -> dict:
    """Load the JSON config; a missing file means all defaults."""

    if not os.path.exists(path):
        return {}

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")
    return data


def _resolve_path(value: str) -> str:
    if os.path.isabs(value):
        return value
    return os.path.join(PROJECT_ROOT, value)


def _positive_int(section: dict, key: str, default: int) -> int:
    value = int(section.get(key, default))
    if value <= 0:
        raise ValueError(f"{key} must be a positive integer, got {value}")
    return value


def _non_negative_int(section: dict, key: str, default: int) -> int:
    value = int(section.get(key, default))
    if value < 0:
        raise ValueError(f"{key} must not be negative, got {value}")
    return value


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value if value else None


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build Settings from config.json, then apply environment overrides."""

    load_dotenv()
    path = config_path or _env("CONFIG_PATH") or CONFIG_PATH
    config: dict[str, Any] = _load_json_config(path)

    defaults = Settings()

    # Bridge connection. BRIDGE_URL wins over the file so one config can be
    # shared between environments.
    _bridge = config.get("bridge", {})
    bridge = BridgeSettings(
        url=_env("BRIDGE_URL") or _bridge.get("url", defaults.bridge.url),
        send_timeout_seconds=float(_bridge.get("send_timeout_seconds", defaults.bridge.send_timeout_seconds)),
        ping_timeout_seconds=float(_bridge.get("ping_timeout_seconds", defaults.bridge.ping_timeout_seconds)),
    )

    # Store locations: the bridge's messages.db, the bot's user db and our
    # own durable dedup state.
    _store = config.get("store", {})
    store = StoreSettings(
        messages_db_path=_resolve_path(
            _env("BRIDGE_DB_PATH") or _store.get("messages_db_path", defaults.store.messages_db_path)
        ),
        users_db_path=_resolve_path(_env("BOT_DB_PATH") or _store.get("users_db_path", defaults.store.users_db_path)),
        state_db_path=_resolve_path(
            _env("STATE_DB_PATH") or _store.get("state_db_path", defaults.store.state_db_path)
        ),
        fetch_limit=_positive_int(_store, "fetch_limit", defaults.store.fetch_limit),
    )

    # Polling cadence and message classification.
    _intake = dict(config.get("intake", {}))
    if _env("POLLING_INTERVAL"):
        _intake["polling_interval_ms"] = _env("POLLING_INTERVAL")
    prefixes = _intake.get("command_prefixes", list(defaults.intake.command_prefixes))
    if isinstance(prefixes, str):
        prefixes = [prefixes]
    grace = float(_intake.get("cutover_grace_seconds", defaults.intake.cutover_grace_seconds))
    if grace < 0:
        raise ValueError(f"cutover_grace_seconds must not be negative, got {grace}")
    intake = IntakeConfig(
        polling_interval_ms=_positive_int(_intake, "polling_interval_ms", defaults.intake.polling_interval_ms),
        cutover_grace_seconds=grace,
        command_prefixes=tuple(str(prefix) for prefix in prefixes if prefix),
        question_marker=str(_intake.get("question_marker", defaults.intake.question_marker)),
        max_message_age_minutes=_positive_int(
            _intake, "max_message_age_minutes", defaults.intake.max_message_age_minutes
        ),
    )

    # Throttling policy, all intervals in milliseconds.
    _limits = config.get("rate_limit", {})
    base = defaults.rate_limit
    rate_limit = RateLimitConfig(
        enabled=bool(_limits.get("enabled", base.enabled)),
        min_response_interval_ms=_non_negative_int(_limits, "min_response_interval_ms", base.min_response_interval_ms),
        max_daily_responses=_positive_int(_limits, "max_daily_responses", base.max_daily_responses),
        command_cooldown_ms=_non_negative_int(_limits, "command_cooldown_ms", base.command_cooldown_ms),
        question_cooldown_ms=_non_negative_int(_limits, "question_cooldown_ms", base.question_cooldown_ms),
        new_conversation_cooldown_ms=_non_negative_int(
            _limits, "new_conversation_cooldown_ms", base.new_conversation_cooldown_ms
        ),
        new_conversation_threshold=_non_negative_int(
            _limits, "new_conversation_threshold", base.new_conversation_threshold
        ),
    )

    _dedup = config.get("dedup", {})
    dedup = DedupConfig(ttl_days=_positive_int(_dedup, "ttl_days", defaults.dedup.ttl_days))

    _admin = config.get("admin", {})
    admin = AdminConfig(
        role=str(_admin.get("role", defaults.admin.role)),
        address_suffix=str(_admin.get("address_suffix", defaults.admin.address_suffix)),
    )

    return Settings(
        bridge=bridge,
        store=store,
        intake=intake,
        rate_limit=rate_limit,
        dedup=dedup,
        admin=admin,
        logging=config.get("logging", {}),
    )
