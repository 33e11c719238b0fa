"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from chorus.models import DialogueRequest


class StartDialogueStream(DialogueRequest):
    pass


class CreateCharacter(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    short_description: str = Field(min_length=1, max_length=200)
    description: str = ""


class SetApiKey(BaseModel):
    api_key: str = ""


class ApiKeyStatus(BaseModel):
    has_api_key: bool
    source: str | None = None  # "user" | "server"
