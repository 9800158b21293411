"""Ports (interfaces) used by the intake core.

Ports define the minimal contracts for the message store, the bridge, the
user store and durable conversation state so that the core can be reused
with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from core.models import AcceptedMessage, InboundMessageRecord, SendResult, UserRecord


class MessageStorePort(Protocol):
    """Read access to inbound messages written by the bridge."""

    def is_ready(self) -> bool:
        ...

    def get_messages_since(self, boundary: datetime) -> list[InboundMessageRecord]:
        """Return rows strictly newer than ``boundary``, oldest first."""
        ...


class ConversationStatePort(Protocol):
    """Durable processed-message state used for crash-safe dedup."""

    def initialize(self) -> None:
        ...

    def should_process_message(self, record: InboundMessageRecord) -> bool:
        ...

    def mark_message_processed(self, record: InboundMessageRecord) -> None:
        ...

    def close(self) -> None:
        ...


class UserStorePort(Protocol):
    """User lookups required by the admin privilege check."""

    def get_user_by_address(self, address: str) -> Optional[UserRecord]:
        ...


class BridgePort(Protocol):
    """Outbound operations offered by the WhatsApp bridge."""

    async def send_text(self, recipient: str, message: str) -> SendResult:
        ...

    async def ping(self) -> bool:
        ...


class DispatchPort(Protocol):
    """Downstream consumer of accepted messages (command dispatch)."""

    async def dispatch(self, message: AcceptedMessage) -> None:
        ...
