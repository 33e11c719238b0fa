"""Principal handling.

Generation runs on background workers that never see the request which
started it, so the principal is captured when the stream opens and installed
explicitly around each piece of work that needs it:

    with principal_scope(principal):
        storage.save_message(...)   # require_principal() sees `principal`

The scope is a contextvars token, reset as soon as the block exits.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from pydantic import BaseModel, ConfigDict

ANONYMOUS_USER = "local"


class Principal(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str


class AccessDeniedError(PermissionError):
    """Raised when the current principal may not touch a resource."""


_current: ContextVar[Principal | None] = ContextVar("chorus_principal", default=None)


@contextmanager
def principal_scope(principal: Principal | None) -> Iterator[None]:
    token = _current.set(principal)
    try:
        yield
    finally:
        _current.reset(token)


def current_principal() -> Principal | None:
    return _current.get()


def require_principal() -> Principal:
    principal = _current.get()
    if principal is None:
        raise AccessDeniedError("No principal in scope")
    return principal
