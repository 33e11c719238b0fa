"""Request-scoped dependencies shared by the routers."""

from fastapi import Header, Request

from chorus.security import ANONYMOUS_USER, Principal
from chorus.service import DialogueStreamService
from chorus.storage import Storage


def get_principal(x_user_id: str | None = Header(default=None)) -> Principal:
    """The caller, from the X-User-Id header (single-user default otherwise)."""
    return Principal(user_id=(x_user_id or "").strip() or ANONYMOUS_USER)


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_service(request: Request) -> DialogueStreamService:
    return request.app.state.service
