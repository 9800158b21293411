"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to the bridge's row layout or the HTTP client's response types.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional, Union

MessageId = Union[str, int]


@dataclass(frozen=True)
class InboundMessageRecord:
    """A message row as read from the bridge's message store.

    ``timestamp`` is None when the stored value could not be parsed; such rows
    are never emitted.
    """

    id: MessageId
    conversation_id: Optional[str]
    sender_id: Optional[str]
    body: str
    timestamp: Optional[datetime]
    is_from_self: bool
    chat_name: Optional[str] = None
    media_type: Optional[str] = None


@dataclass(frozen=True)
class AcceptedMessage:
    """A record that passed every intake filter, with its classification.

    The admin decision is made once at intake and travels with the message so
    the reply path does not need to look it up again.
    """

    record: InboundMessageRecord
    is_command: bool
    is_question: bool
    is_admin: bool

    @property
    def conversation_id(self) -> str:
        return self.record.conversation_id or ""

    @property
    def body(self) -> str:
        return self.record.body


@dataclass
class RateLimitState:
    """Throttling counters for one conversation."""

    conversation_id: str
    last_response_at: Optional[datetime] = None
    daily_count: int = 0
    last_command_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserRecord:
    """Minimal user row needed for privilege decisions."""

    address: str
    role: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class SendResult:
    """Outcome of an outbound send through the bridge."""

    success: bool
    error: Optional[str] = None
    data: Optional[Any] = None


@dataclass
class IntakeStats:
    """Counters shared by the poller and the outbound gate."""

    messages_processed: int = 0
    duplicates_filtered: int = 0
    stale_filtered: int = 0
    self_filtered: int = 0
    rate_limit_hits: int = 0
    errors: int = 0
    messages_sent: int = 0
    send_failures: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)
