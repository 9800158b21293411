"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-conversation throttling policy, all intervals in milliseconds."""

    enabled: bool = True
    min_response_interval_ms: int = 20000
    max_daily_responses: int = 100
    command_cooldown_ms: int = 5000
    question_cooldown_ms: int = 15000
    new_conversation_cooldown_ms: int = 3000
    new_conversation_threshold: int = 5


@dataclass(frozen=True)
class IntakeConfig:
    """Polling and classification settings for the intake poller."""

    polling_interval_ms: int = 5000
    cutover_grace_seconds: float = 10.0
    command_prefixes: Tuple[str, ...] = ("/", "!")
    question_marker: str = "?"
    max_message_age_minutes: int = 60


@dataclass(frozen=True)
class DedupConfig:
    """Retention for durable processed-message entries."""

    ttl_days: int = 30


@dataclass(frozen=True)
class AdminConfig:
    """How admin identities are addressed and recognized in the user store."""

    role: str = "admin"
    address_suffix: str = "@s.whatsapp.net"
