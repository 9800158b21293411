"""Processed-message dedup cache (core domain)."""

from __future__ import annotations

import logging

from core.models import InboundMessageRecord, MessageId
from core.ports import ConversationStatePort

LOGGER = logging.getLogger(__name__)


def message_key(message_id: MessageId) -> str:
    """Normalize store ids so ``42`` and ``"42"`` dedup together."""

    return str(message_id)


class DedupCache:
    """In-memory id set backed by durable conversation state.

    The in-memory set is authoritative within a process; the durable state
    carries processed ids across restarts.
    """

    def __init__(self, state: ConversationStatePort) -> None:
        self._state = state
        self._seen: set[str] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def initialize(self) -> None:
        self._state.initialize()

    def close(self) -> None:
        self._state.close()

    def has(self, record: InboundMessageRecord) -> bool:
        if message_key(record.id) in self._seen:
            LOGGER.info("Message %s already processed in memory", record.id)
            return True
        return not self._state.should_process_message(record)

    def mark_processed(self, record: InboundMessageRecord) -> None:
        # Memory first: at-most-once holds in-process even if the durable
        # write fails.
        self._seen.add(message_key(record.id))
        self._state.mark_message_processed(record)

    def clear_processed_cache(self) -> None:
        """Drop the in-memory set; durable state still rejects known ids."""

        self._seen.clear()
        LOGGER.info("Processed message cache cleared")
