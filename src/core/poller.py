"""Intake poller: the fetch-filter-emit control loop.

Each tick enforces a strict order per row:
1) Cutover: rows at or before the boundary are history
2) Self messages are never treated as inbound
3) Dedup (in-memory, then durable state)
4) Classification (command / question) and the admin decision
5) Rate limit ledger for non-admin conversations, counting rows already
   accepted earlier in the same poll
6) Mark processed, then hand off to downstream dispatch

The cursor advances past every examined row, whatever the outcome, so a
rejected row is never fetched again. Dispatch runs as separate tasks so a
slow reply cannot stall intake.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from core.admin import AdminPrivilegeCheck
from core.classification import is_command, is_question
from core.config import IntakeConfig
from core.cutover import Clock, CutoverClock, format_store_timestamp, local_now
from core.dedup import DedupCache, message_key
from core.models import AcceptedMessage, InboundMessageRecord, IntakeStats
from core.ports import DispatchPort, MessageStorePort
from core.rate_limit import PollReservations, RateLimitLedger

LOGGER = logging.getLogger(__name__)


class IntakePoller:
    """Periodically pulls new rows from the message store and emits accepted ones."""

    def __init__(
        self,
        store: MessageStorePort,
        dedup: DedupCache,
        ledger: RateLimitLedger,
        admin: AdminPrivilegeCheck,
        dispatcher: DispatchPort,
        config: IntakeConfig = IntakeConfig(),
        cutover: Optional[CutoverClock] = None,
        stats: Optional[IntakeStats] = None,
        clock: Clock = local_now,
    ) -> None:
        self._store = store
        self._dedup = dedup
        self._ledger = ledger
        self._admin = admin
        self._dispatcher = dispatcher
        self._config = config
        self._cutover = cutover or CutoverClock(clock)
        self._stats = stats if stats is not None else IntakeStats()
        self._clock = clock

        self._interval = config.polling_interval_ms / 1000
        self._cursor: Optional[datetime] = None
        self._state_initialized = False
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._tick_in_progress = False
        self._pending: set[asyncio.Task] = set()
        self._unparseable: set[str] = set()
        self._started_at: Optional[datetime] = None
        self._last_heartbeat: Optional[datetime] = None

    @property
    def cursor(self) -> Optional[datetime]:
        return self._cursor

    @property
    def cutover(self) -> CutoverClock:
        return self._cutover

    @property
    def stats(self) -> IntakeStats:
        return self._stats

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopping

    def _ensure_cutover(self) -> None:
        if self._cursor is not None:
            return
        grace = timedelta(seconds=self._config.cutover_grace_seconds)
        self._cursor = self._cutover.initialize(grace)

    def _advance(self, timestamp: Optional[datetime]) -> None:
        if timestamp is None or self._cursor is None:
            return
        if timestamp > self._cursor:
            self._cursor = timestamp

    async def start(self, interval_ms: Optional[int] = None) -> None:
        """Begin polling. A second call while running only logs a warning.

        Startup errors (cutover or durable state initialization) propagate.
        """

        if self.is_polling:
            LOGGER.warning("Polling is already active")
            return

        if self._task is not None and not self._task.done():
            # A stopped loop may still be finishing its last tick.
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            if self.is_polling:
                LOGGER.warning("Polling is already active")
                return

        if interval_ms is not None:
            if interval_ms <= 0:
                raise ValueError("Polling interval must be positive")
            self._interval = interval_ms / 1000

        self._ensure_cutover()
        if not self._state_initialized:
            self._dedup.initialize()
            self._state_initialized = True

        self._stopping = False
        self._started_at = self._clock()
        self._task = asyncio.create_task(self._run(), name="intake-poller")
        LOGGER.info("Polling every %sms from %s", int(self._interval * 1000), format_store_timestamp(self._cursor))

    async def _run(self) -> None:
        # The next tick is only scheduled once the current one resolved, so
        # ticks never overlap however long a store query takes.
        while not self._stopping:
            await self.poll_once()
            if self._stopping:
                break
            await asyncio.sleep(self._interval)

    def stop(self) -> None:
        """Cancel the pending timer without waiting for an in-flight tick."""

        if self._task is None or self._stopping:
            return
        self._stopping = True
        if not self._tick_in_progress:
            self._task.cancel()
        LOGGER.info("Polling stopped")

    async def drain(self) -> None:
        """Wait for every dispatched message handler to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop polling, finish in-flight work and close durable state."""

        self.stop()
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self.drain()
        if self._state_initialized:
            self._dedup.close()
            self._state_initialized = False

    async def poll_once(self) -> list[AcceptedMessage]:
        """Run one fetch-filter-emit cycle and return the accepted messages."""

        if self._tick_in_progress:
            LOGGER.warning("Previous poll tick still running; skipping")
            return []

        self._tick_in_progress = True
        try:
            return await self._tick()
        finally:
            self._tick_in_progress = False

    async def _tick(self) -> list[AcceptedMessage]:
        self._ensure_cutover()

        try:
            ready = self._store.is_ready()
        except Exception:
            LOGGER.warning("Message store readiness check failed", exc_info=True)
            ready = False
        if not ready:
            return []

        self._ledger.reset_daily_counters_if_needed()

        try:
            rows = await asyncio.to_thread(self._store.get_messages_since, self._cursor)
        except Exception as exc:
            self._stats.errors += 1
            LOGGER.warning("Failed to read new messages: %s", exc)
            return []

        if rows:
            LOGGER.info("Found %s new messages since %s", len(rows), format_store_timestamp(self._cursor))

        reservations = PollReservations(self._ledger)
        accepted: list[AcceptedMessage] = []
        for record in rows:
            try:
                message = await self._examine(record, reservations)
            except Exception:
                self._stats.errors += 1
                LOGGER.exception("Error examining message %s", getattr(record, "id", None))
                continue
            finally:
                self._advance(getattr(record, "timestamp", None))

            if message is not None:
                accepted.append(message)
                self._emit(message)

        self._last_heartbeat = self._clock()
        return accepted

    async def _examine(self, record: InboundMessageRecord, reservations: PollReservations) -> Optional[AcceptedMessage]:
        if record.timestamp is None:
            key = message_key(record.id)
            if key not in self._unparseable:
                self._unparseable.add(key)
                self._stats.errors += 1
                LOGGER.warning("Skipping message %s with unreadable timestamp", record.id)
            return None

        if self._cutover.is_stale(record.timestamp):
            self._stats.stale_filtered += 1
            LOGGER.debug("Message %s predates cutover", record.id)
            return None

        if record.is_from_self:
            self._stats.self_filtered += 1
            return None

        if not record.conversation_id:
            self._stats.errors += 1
            LOGGER.warning("Skipping message %s without a conversation id", record.id)
            return None

        # Durable state and user lookups hit SQLite; keep them off the loop.
        if await asyncio.to_thread(self._dedup.has, record):
            self._stats.duplicates_filtered += 1
            return None

        command = is_command(record.body, self._config.command_prefixes)
        question = is_question(record.body, self._config.question_marker)
        admin = await asyncio.to_thread(self._admin.is_admin, record.conversation_id)

        if not reservations.can_accept(record.conversation_id, record.timestamp, command, question, exempt=admin):
            await asyncio.to_thread(self._dedup.mark_processed, record)
            self._stats.rate_limit_hits += 1
            LOGGER.info("Rate limited message %s from %s", record.id, record.conversation_id)
            return None

        reservations.accept(record.conversation_id, record.timestamp, command, exempt=admin)
        await asyncio.to_thread(self._dedup.mark_processed, record)
        self._stats.messages_processed += 1
        LOGGER.info(
            "Accepted message %s from %s at %s%s",
            record.id,
            record.conversation_id,
            format_store_timestamp(record.timestamp),
            " (admin)" if admin else "",
        )
        return AcceptedMessage(record=record, is_command=command, is_question=question, is_admin=admin)

    def _emit(self, message: AcceptedMessage) -> None:
        task = asyncio.create_task(self._dispatch(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _dispatch(self, message: AcceptedMessage) -> None:
        try:
            await self._dispatcher.dispatch(message)
        except Exception:
            self._stats.errors += 1
            LOGGER.exception("Dispatch failed for message %s", message.record.id)

    def status(self) -> dict[str, Any]:
        uptime = 0.0
        if self._started_at is not None:
            uptime = (self._clock() - self._started_at).total_seconds()
        return {
            "polling": self.is_polling,
            "cursor": format_store_timestamp(self._cursor) if self._cursor else None,
            "cutover": self._cutover.formatted if self._cutover.initialized else None,
            "last_heartbeat": self._last_heartbeat.isoformat() if self._last_heartbeat else None,
            "pending_dispatches": len(self._pending),
            "uptime_seconds": uptime,
            "stats": self._stats.as_dict(),
        }
