"""Admin privilege check (core domain)."""

from __future__ import annotations

import logging
from typing import Optional

from core.config import AdminConfig
from core.ports import UserStorePort

LOGGER = logging.getLogger(__name__)


def normalize_address(identifier: str, suffix: str) -> str:
    """Return the canonical user-store address for a chat or sender id."""

    identifier = identifier.strip()
    if "@" in identifier:
        return identifier
    return f"{identifier}{suffix}"


class AdminPrivilegeCheck:
    """Exempts admin users from throttling; fails closed on any lookup error."""

    def __init__(self, users: Optional[UserStorePort], config: AdminConfig = AdminConfig()) -> None:
        self._users = users
        self._config = config

    def is_admin(self, identifier: Optional[str]) -> bool:
        if not identifier or self._users is None:
            return False

        address = normalize_address(identifier, self._config.address_suffix)
        try:
            user = self._users.get_user_by_address(address)
        except Exception:
            LOGGER.warning("Admin lookup failed for %s; applying rate limits", address, exc_info=True)
            return False

        is_admin = user is not None and user.role == self._config.role
        if is_admin:
            LOGGER.debug("Admin user %s is exempt from rate limits", address)
        return is_admin
