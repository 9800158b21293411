"""Exceptions raised by adapters and contained by the core."""

from __future__ import annotations


class IntakeError(Exception):
    """Base class for intake engine errors."""


class StoreUnavailableError(IntakeError):
    """A backing SQLite store could not be opened or queried."""


class BridgeError(IntakeError):
    """The WhatsApp bridge rejected a request or could not be reached."""
