"""Core domain models.

Storage, the prompt builder and the orchestrator all operate on these types.
Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DialogueStatus = Literal["in_progress", "completed", "failed"]

ChatRole = Literal["system", "user", "assistant"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Character(BaseModel):
    """A persona that can take part in dialogues."""

    id: str
    name: str
    short_description: str
    description: str = ""
    owner: str | None = None  # None = shared by every user


class LLMModel(BaseModel):
    """A provider model a character can be voiced by."""

    id: str
    name: str
    model: str  # provider identifier, e.g. "openai/gpt-4o-mini"


class CharacterConfig(BaseModel):
    """Which LLM voices which character in one dialogue."""

    model_config = ConfigDict(frozen=True)

    character_id: str
    llm_id: str


class Message(BaseModel):
    """One completed character turn. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    turn_number: int
    character_id: str
    content: str


class Dialogue(BaseModel):
    """One generation session: scene, participants, status and history."""

    id: int
    owner: str
    name: str = "Whispered Dialogue"
    scene_description: str
    character_configs: list[CharacterConfig]
    status: DialogueStatus = "in_progress"
    turn_count: int = 0
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    messages: list[Message] = Field(default_factory=list)


class ChatMessage(BaseModel):
    """A role-tagged message in the provider's chat-completion format."""

    model_config = ConfigDict(frozen=True)

    role: ChatRole
    content: str


class DialogueRequest(BaseModel):
    """Everything needed to start generating a dialogue."""

    scene_description: str = Field(min_length=1, max_length=500)
    character_configs: list[CharacterConfig] = Field(min_length=2, max_length=3)
    length: int | None = Field(default=None, ge=1, le=50)
    name: str | None = Field(default=None, max_length=100)

    @field_validator("scene_description")
    @classmethod
    def _scene_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Scene description cannot be blank")
        return v

    @field_validator("character_configs")
    @classmethod
    def _unique_characters(cls, v: list[CharacterConfig]) -> list[CharacterConfig]:
        ids = [c.character_id for c in v]
        if len(set(ids)) != len(ids):
            raise ValueError("Each character may appear only once in a dialogue")
        return v
