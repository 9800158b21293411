"""Per-conversation rate limit ledger (core domain).

Policy, checked in order:
- admin-exempt conversations are never throttled
- counts reset for every conversation at the process's local midnight
- a conversation that reached the daily cap is rejected until the next day
- commands use a short cooldown measured from the last command
- questions use an intermediate cooldown from the last response
- everything else uses the standard cooldown, relaxed while the
  conversation is still new
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Optional

from core.config import RateLimitConfig
from core.cutover import Clock, local_now
from core.models import RateLimitState

LOGGER = logging.getLogger(__name__)


def _cooling_down(last: Optional[datetime], cooldown_ms: int, now: datetime) -> bool:
    if last is None:
        return False
    return now - last < timedelta(milliseconds=cooldown_ms)


class RateLimitLedger:
    """Decides whether a conversation may receive a response and records sends."""

    def __init__(self, config: RateLimitConfig, clock: Clock = local_now) -> None:
        self._config = config
        self._clock = clock
        self._states: dict[str, RateLimitState] = {}
        self._current_day: date = clock().date()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def state_for(self, conversation_id: str) -> Optional[RateLimitState]:
        """Return a copy of the conversation's counters, if it was ever touched."""

        state = self._states.get(conversation_id)
        return replace(state) if state is not None else None

    def reset_daily_counters_if_needed(self) -> bool:
        """Zero every daily count once the local calendar day changes.

        Returns True only on the call that performed the reset.
        """

        today = self._clock().date()
        if today == self._current_day:
            return False

        for state in self._states.values():
            state.daily_count = 0
        self._current_day = today
        LOGGER.info("Daily response counters reset for %s conversations", len(self._states))
        return True

    def can_respond(
        self,
        conversation_id: str,
        is_command: bool = False,
        is_question: bool = False,
        *,
        exempt: bool = False,
    ) -> bool:
        if exempt or not self._config.enabled:
            return True

        self.reset_daily_counters_if_needed()
        state = self._states.get(conversation_id)
        if state is None:
            return True
        return self.allows(state, is_command, is_question, self._clock())

    def allows(self, state: RateLimitState, is_command: bool, is_question: bool, now: datetime) -> bool:
        """Apply the cap and cooldown tiers to ``state`` as seen at ``now``."""

        if state.daily_count >= self._config.max_daily_responses:
            LOGGER.info(
                "Daily limit reached for %s (%s/%s)",
                state.conversation_id,
                state.daily_count,
                self._config.max_daily_responses,
            )
            return False

        if is_command:
            return not _cooling_down(state.last_command_at, self._config.command_cooldown_ms, now)

        if is_question:
            return not _cooling_down(state.last_response_at, self._config.question_cooldown_ms, now)

        if state.daily_count < self._config.new_conversation_threshold:
            cooldown_ms = self._config.new_conversation_cooldown_ms
        else:
            cooldown_ms = self._config.min_response_interval_ms
        return not _cooling_down(state.last_response_at, cooldown_ms, now)

    def record_response(
        self,
        conversation_id: str,
        is_command: bool = False,
        *,
        exempt: bool = False,
    ) -> None:
        """Account for a response that was actually sent."""

        if exempt or not self._config.enabled:
            return

        self.reset_daily_counters_if_needed()
        now = self._clock()
        state = self._states.get(conversation_id)
        if state is None:
            state = RateLimitState(conversation_id=conversation_id)
            self._states[conversation_id] = state

        state.last_response_at = now
        state.daily_count += 1
        if is_command:
            state.last_command_at = now

        LOGGER.info(
            "Responses today for %s: %s/%s%s",
            conversation_id,
            state.daily_count,
            self._config.max_daily_responses,
            " (command)" if is_command else "",
        )


class PollReservations:
    """Acceptances made during one poll that no send has confirmed yet.

    Rows fetched together are checked as if every earlier accepted row of the
    same conversation had already been answered at its own timestamp, so a
    burst cannot slip through against unchanged ledger state.
    """

    def __init__(self, ledger: RateLimitLedger) -> None:
        self._ledger = ledger
        self._pending: dict[str, RateLimitState] = {}

    def can_accept(
        self,
        conversation_id: str,
        timestamp: datetime,
        is_command: bool = False,
        is_question: bool = False,
        *,
        exempt: bool = False,
    ) -> bool:
        if not self._ledger.can_respond(conversation_id, is_command, is_question, exempt=exempt):
            return False
        if exempt or not self._ledger.config.enabled:
            return True

        pending = self._pending.get(conversation_id)
        if pending is None:
            return True
        return self._ledger.allows(pending, is_command, is_question, timestamp)

    def accept(
        self,
        conversation_id: str,
        timestamp: datetime,
        is_command: bool = False,
        *,
        exempt: bool = False,
    ) -> None:
        if exempt or not self._ledger.config.enabled:
            return

        pending = self._pending.get(conversation_id)
        if pending is None:
            pending = self._ledger.state_for(conversation_id) or RateLimitState(conversation_id=conversation_id)
            self._pending[conversation_id] = pending

        if pending.last_response_at is None or timestamp > pending.last_response_at:
            pending.last_response_at = timestamp
        if is_command and (pending.last_command_at is None or timestamp > pending.last_command_at):
            pending.last_command_at = timestamp
        pending.daily_count += 1
