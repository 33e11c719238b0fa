"""Character endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from backend.deps import get_principal, get_storage
from chorus.models import Character
from chorus.security import Principal
from chorus.storage import Storage, slugify

from .models import CreateCharacter

router = APIRouter()


@router.get("/characters")
async def list_characters(
    principal: Principal = Depends(get_principal),
    storage: Storage = Depends(get_storage),
):
    """List shared characters and the caller's own."""
    return storage.get_characters(principal.user_id)


@router.post("/characters", status_code=201)
async def create_character(
    body: CreateCharacter,
    principal: Principal = Depends(get_principal),
    storage: Storage = Depends(get_storage),
):
    """Create a character owned by the caller."""
    char = Character(
        id=slugify(body.name),
        name=body.name,
        short_description=body.short_description,
        description=body.description,
        owner=principal.user_id,
    )
    # Check for slug collision
    if storage.get_character(char.id) is not None:
        raise HTTPException(409, f"Character '{body.name}' already exists")
    storage.save_character(char)
    return char
