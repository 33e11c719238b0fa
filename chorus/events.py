"""Generation events and the listener interface that receives them.

The orchestrator describes what happens during generation as a closed set of
immutable events. Anything that needs to know (the SSE connection, the
persistence layer) implements DialogueEventHandler:

    DialogueStart     -> on_dialogue_start
    TurnStart         -> on_character_start
    Token             -> on_token
    TurnComplete      -> on_character_complete
    DialogueComplete  -> on_dialogue_complete
    DialogueError     -> on_error

DialogueEventHandler.handle() routes any GenerationEvent to the matching method.
Each event carries a fresh event_id so clients can de-duplicate.
"""

from __future__ import annotations

import uuid
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from chorus.models import CharacterConfig, DialogueStatus


def _event_id() -> str:
    return str(uuid.uuid4())


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=_event_id)


class DialogueStart(_Event):
    dialogue_id: int
    character_configs: tuple[CharacterConfig, ...]
    turn_count: int


class TurnStart(_Event):
    character_config: CharacterConfig


class Token(_Event):
    character_config: CharacterConfig
    token: str


class TurnComplete(_Event):
    character_id: str
    token_count: int
    message_content: str
    turn_number: int


class DialogueComplete(_Event):
    status: DialogueStatus
    turn_count: int


class DialogueError(_Event):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    dialogue_id: int
    cause: BaseException


GenerationEvent = Union[
    DialogueStart, TurnStart, Token, TurnComplete, DialogueComplete, DialogueError
]


class DialogueEventHandler:
    """Receives generation events. Every method is a no-op by default."""

    def handle(self, event: GenerationEvent) -> None:
        """Route any event to its on_* method."""
        if isinstance(event, DialogueStart):
            self.on_dialogue_start(event)
        elif isinstance(event, TurnStart):
            self.on_character_start(event)
        elif isinstance(event, Token):
            self.on_token(event)
        elif isinstance(event, TurnComplete):
            self.on_character_complete(event)
        elif isinstance(event, DialogueComplete):
            self.on_dialogue_complete(event)
        elif isinstance(event, DialogueError):
            self.on_error(event)
        else:
            raise TypeError(f"Unknown generation event: {type(event).__name__}")

    def on_dialogue_start(self, event: DialogueStart) -> None:
        pass

    def on_character_start(self, event: TurnStart) -> None:
        pass

    def on_token(self, event: Token) -> None:
        pass

    def on_character_complete(self, event: TurnComplete) -> None:
        pass

    def on_dialogue_complete(self, event: DialogueComplete) -> None:
        pass

    def on_error(self, event: DialogueError) -> None:
        pass
