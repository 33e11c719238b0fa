"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, API key), characters, llms, dialogues.
POST /api/dialogues/stream starts a generation and answers with a
text/event-stream of its events; the dialogue id is in the X-Dialogue-Id
response header.

The caller is identified by the X-User-Id header (default "local").
"""

from fastapi import APIRouter

from .characters import router as characters_router
from .dialogues import router as dialogues_router
from .llms import router as llms_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(characters_router)
router.include_router(llms_router)
router.include_router(dialogues_router)
