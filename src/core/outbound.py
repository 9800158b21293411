"""Outbound gate: rate-limited sends through the bridge.

Replies use the admin decision and classification made at intake; other sends
resolve the admin decision once here. The ledger is only updated after the
bridge confirmed a send.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Optional

from core.admin import AdminPrivilegeCheck
from core.errors import BridgeError
from core.models import AcceptedMessage, IntakeStats, SendResult
from core.ports import BridgePort
from core.rate_limit import RateLimitLedger

LOGGER = logging.getLogger(__name__)

RATE_LIMITED = "Rate limit exceeded"


class OutboundGate:
    """Wraps the bridge send call with the shared rate limit ledger."""

    def __init__(
        self,
        bridge: BridgePort,
        ledger: RateLimitLedger,
        admin: AdminPrivilegeCheck,
        stats: Optional[IntakeStats] = None,
    ) -> None:
        self._bridge = bridge
        self._ledger = ledger
        self._admin = admin
        self._stats = stats if stats is not None else IntakeStats()
        # One writer per conversation: check, send and record happen as a unit.
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def reply(self, message: AcceptedMessage, text: str) -> SendResult:
        """Answer an accepted inbound message."""

        return await self.send(
            message.conversation_id,
            text,
            is_command=message.is_command,
            is_question=message.is_question,
            exempt=message.is_admin,
        )

    async def send(
        self,
        recipient: str,
        text: str,
        *,
        is_command: bool = False,
        is_question: bool = False,
        exempt: Optional[bool] = None,
    ) -> SendResult:
        if exempt is None:
            exempt = self._admin.is_admin(recipient)

        async with self._locks[recipient]:
            if not self._ledger.can_respond(recipient, is_command, is_question, exempt=exempt):
                self._stats.rate_limit_hits += 1
                LOGGER.warning("Not sending to %s: rate limit reached", recipient)
                return SendResult(success=False, error=RATE_LIMITED)

            LOGGER.info("Sending message to %s: %s", recipient, text[:50])
            try:
                result = await self._bridge.send_text(recipient, text)
            except BridgeError as exc:
                result = SendResult(success=False, error=str(exc))

            if not result.success:
                self._stats.send_failures += 1
                LOGGER.error("Send to %s failed: %s", recipient, result.error)
                return result

            self._ledger.record_response(recipient, is_command, exempt=exempt)
            self._stats.messages_sent += 1
            return result
