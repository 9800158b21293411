"""Message classification helpers used for rate limit tiers."""

from __future__ import annotations

from typing import Iterable


def is_command(body: str, prefixes: Iterable[str]) -> bool:
    """True when the trimmed body starts with any configured command prefix."""

    text = body.strip()
    if not text:
        return False
    return any(prefix and text.startswith(prefix) for prefix in prefixes)


def is_question(body: str, marker: str = "?") -> bool:
    return bool(marker) and marker in body
