"""LLM catalogue endpoint."""

from fastapi import APIRouter, Depends

from backend.deps import get_storage
from chorus.storage import Storage

router = APIRouter()


@router.get("/llms")
async def list_llms(storage: Storage = Depends(get_storage)):
    """List the LLMs a character can be voiced by."""
    return storage.get_llms()
