# receiving_hub/auth.py
"""
Caller identity.

Tokens are issued and verified upstream (API gateway / auth service). This
module only turns an already-authenticated request into a ``Caller`` and
enforces the admin role where a route needs it.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol

from fastapi import Depends, Request

from receiving_hub.db_models import UserRole
from receiving_hub.errors import AuthenticationError, PermissionDenied


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


class CallerResolver(Protocol):
    def resolve(self, request: Request) -> Caller: ...


class HeaderCallerResolver:
    """Reads the identity the gateway forwards in X-User-Id / X-User-Role."""

    USER_HEADER = "X-User-Id"
    ROLE_HEADER = "X-User-Role"

    def resolve(self, request: Request) -> Caller:
        user_id = (request.headers.get(self.USER_HEADER) or "").strip()
        role_raw = (request.headers.get(self.ROLE_HEADER) or "").strip().lower()
        if not user_id:
            raise AuthenticationError("Authentication is required")
        try:
            role = UserRole(role_raw)
        except ValueError:
            raise AuthenticationError(f"Unknown role '{role_raw}'")
        return Caller(user_id=user_id, role=role)


def get_caller(request: Request) -> Caller:
    resolver: CallerResolver = request.app.state.caller_resolver
    return resolver.resolve(request)


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise PermissionDenied("Admin access required")
    return caller
