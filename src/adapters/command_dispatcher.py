"""Minimal command dispatcher.

Routes accepted messages to handlers keyed by command name or alias and sends
the handler's reply through the outbound gate. Non-command messages are left
to other consumers and only logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from core.models import AcceptedMessage
from core.outbound import OutboundGate

LOGGER = logging.getLogger(__name__)

Handler = Callable[[AcceptedMessage, list[str]], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class Command:
    name: str
    description: str
    handler: Handler
    aliases: tuple[str, ...] = ()


def parse_command(body: str, prefixes: Iterable[str]) -> Optional[tuple[str, list[str]]]:
    """Split ``/name arg1 arg2`` into ``("name", ["arg1", "arg2"])``."""

    text = body.strip()
    for prefix in prefixes:
        if prefix and text.startswith(prefix):
            parts = text[len(prefix):].split()
            if not parts:
                return None
            return parts[0].lower(), parts[1:]
    return None


class CommandDispatcher:
    """DispatchPort implementation backed by a name/alias table."""

    def __init__(self, gate: OutboundGate, prefixes: Iterable[str] = ("/", "!")) -> None:
        self._gate = gate
        self._prefixes = tuple(prefixes)
        self._commands: dict[str, Command] = {}
        self._lookup: dict[str, Command] = {}
        self.register(Command("help", "List available commands", self._help, aliases=("ayuda", "h")))
        self.register(Command("ping", "Check that the bot is alive", self._ping))

    def register(self, command: Command) -> None:
        for key in (command.name, *command.aliases):
            key = key.lower()
            if key in self._lookup:
                raise ValueError(f"Command name already registered: {key}")
        self._commands[command.name] = command
        for key in (command.name, *command.aliases):
            self._lookup[key.lower()] = command

    def resolve(self, name: str) -> Optional[Command]:
        return self._lookup.get(name.lower())

    async def dispatch(self, message: AcceptedMessage) -> None:
        if not message.is_command:
            LOGGER.debug("No command in message %s", message.record.id)
            return

        parsed = parse_command(message.body, self._prefixes)
        if parsed is None:
            return
        name, args = parsed
        command = self.resolve(name)
        if command is None:
            LOGGER.info("Unknown command %r from %s", name, message.conversation_id)
            reply = f"Unknown command: {name}. Send {self._prefixes[0]}help for the list."
        else:
            reply = await command.handler(message, args)

        if reply:
            await self._gate.reply(message, reply)

    async def _help(self, message: AcceptedMessage, args: list[str]) -> str:
        prefix = self._prefixes[0] if self._prefixes else ""
        lines = ["Available commands:"]
        for command in sorted(self._commands.values(), key=lambda item: item.name):
            lines.append(f"{prefix}{command.name} - {command.description}")
        return "\n".join(lines)

    async def _ping(self, message: AcceptedMessage, args: list[str]) -> str:
        return "pong"
