"""
Acting principal and identity provider (``stock_kernel.domain.principal``).

The kernel never decides who may do what.  It only needs to know who is
acting so ledger entries and status events can be stamped.  The auth layer
supplies an ``IdentityProvider``; this module defines the shape plus two
small implementations.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Who is acting: an id plus the role the auth layer resolved."""

    id: UUID
    role: str


class IdentityProvider(Protocol):
    def current_principal(self) -> AuthenticatedPrincipal: ...


class StaticIdentityProvider:
    """Always returns the same principal. Used by scripts and tests."""

    def __init__(self, principal: AuthenticatedPrincipal):
        self._principal = principal

    def current_principal(self) -> AuthenticatedPrincipal:
        return self._principal


_current_principal: ContextVar[AuthenticatedPrincipal | None] = ContextVar(
    "current_principal", default=None
)


class ContextIdentityProvider:
    """Reads the principal bound for the current request context."""

    def current_principal(self) -> AuthenticatedPrincipal:
        principal = _current_principal.get()
        if principal is None:
            raise LookupError("No principal bound to the current context")
        return principal

    @staticmethod
    @contextmanager
    def bind(principal: AuthenticatedPrincipal) -> Iterator[AuthenticatedPrincipal]:
        token = _current_principal.set(principal)
        try:
            yield principal
        finally:
            _current_principal.reset(token)
