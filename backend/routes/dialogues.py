"""Dialogue endpoints — streamed generation plus read access to stored dialogues."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from backend.deps import get_principal, get_service, get_storage
from chorus.executor import ExecutorSaturatedError
from chorus.security import AccessDeniedError, Principal, principal_scope
from chorus.service import DialogueLimitError, DialogueStreamService, NoApiKeyError
from chorus.storage import NotFoundError, Storage

from .models import StartDialogueStream

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}

_SETUP_ERRORS: list[tuple[type[Exception], int]] = [
    (NoApiKeyError, 402),
    (AccessDeniedError, 403),
    (NotFoundError, 404),
    (DialogueLimitError, 409),
    (ValueError, 422),
    (ExecutorSaturatedError, 503),
]


def _http_error(e: Exception) -> HTTPException | None:
    for exc_type, status in _SETUP_ERRORS:
        if isinstance(e, exc_type):
            return HTTPException(status, str(e))
    return None


@router.post("/dialogues/stream")
async def stream_dialogue(
    body: StartDialogueStream,
    principal: Principal = Depends(get_principal),
    service: DialogueStreamService = Depends(get_service),
):
    """Start generating a dialogue and stream its events as SSE."""
    try:
        dialogue, stream = service.open_stream(body, principal)
    except Exception as e:
        error = _http_error(e)
        if error is None:
            raise
        raise error from e
    return StreamingResponse(
        stream.frames(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Dialogue-Id": str(dialogue.id)},
    )


@router.delete("/dialogues/{dialogue_id}/stream")
async def close_dialogue_stream(
    dialogue_id: int,
    principal: Principal = Depends(get_principal),
    storage: Storage = Depends(get_storage),
    service: DialogueStreamService = Depends(get_service),
):
    """Close a live stream. Generation carries on and is still persisted."""
    _get_owned(storage, dialogue_id, principal)
    if not service.close_stream(dialogue_id):
        raise HTTPException(404, "No active stream for this dialogue")
    return {"ok": True}


@router.get("/dialogues")
async def list_dialogues(
    principal: Principal = Depends(get_principal),
    storage: Storage = Depends(get_storage),
):
    """List the caller's dialogues, newest first, without messages."""
    return [d.model_dump(exclude={"messages"}) for d in storage.list_dialogues(principal.user_id)]


@router.get("/dialogues/{dialogue_id}")
async def get_dialogue(
    dialogue_id: int,
    principal: Principal = Depends(get_principal),
    storage: Storage = Depends(get_storage),
):
    """Get a dialogue with its messages."""
    return _get_owned(storage, dialogue_id, principal)


def _get_owned(storage: Storage, dialogue_id: int, principal: Principal):
    try:
        with principal_scope(principal):
            return storage.get_dialogue(dialogue_id)
    except NotFoundError:
        raise HTTPException(404, "Dialogue not found")
    except AccessDeniedError:
        raise HTTPException(403, "Not your dialogue")
