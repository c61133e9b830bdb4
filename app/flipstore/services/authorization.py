from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol


class AuthorizationManager(Protocol):
    def is_allowed(self, required_permissions: Iterable[str], caller_roles: Iterable[str]) -> bool:
        ...


class RoleBasedAuthorizationManager:
    """Allows when nothing is required or the caller holds one of the roles."""

    def is_allowed(self, required_permissions: Iterable[str], caller_roles: Iterable[str]) -> bool:
        required = set(required_permissions or ())
        if not required:
            return True
        return bool(required & set(caller_roles or ()))
