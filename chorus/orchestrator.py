"""Dialogue orchestrator — runs a whole dialogue, one character turn at a time.

Flow for T turns over N configured characters:

  1. DialogueStart(dialogue_id, configs, T)
  2. for turn in 1..T, for each config in declaration order:
       TurnStart -> build prompt from history -> stream_chat
       -> Token per delta -> TurnComplete once the stream ends
  3. DialogueComplete("completed", T)

Any exception along the way aborts the loop and emits a single DialogueError.
Cancelling the run (server shutdown) does the same before the cancellation
propagates, so the dialogue is not left in progress.
Provider failures are not exceptions here: the client ends the stream early,
so the turn completes with zero tokens and generation continues.

LLM callbacks may arrive from any thread; they are marshalled back onto the
orchestrator's event loop, so the token buffer is only touched there.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, ConfigDict

from chorus.events import (
    DialogueComplete,
    DialogueError,
    DialogueEventHandler,
    DialogueStart,
    Token,
    TurnComplete,
    TurnStart,
)
from chorus.llm import StreamingLLM
from chorus.models import Character, CharacterConfig, Dialogue, LLMModel, Message
from chorus.prompts import SYSTEM_TEMPLATE, build_dialogue_messages

logger = logging.getLogger(__name__)

DEFAULT_TURN_COUNT = 5

Phase = Literal["not_started", "running", "completed", "failed"]


class GenerationCancelledError(Exception):
    """Reported to handlers when a run is cancelled before it finishes."""


class OrchestratorState(BaseModel):
    """Where one dialogue run is: phase plus the (turn, index) being generated."""

    model_config = ConfigDict(frozen=True)

    phase: Phase = "not_started"
    turn: int = 0
    index: int = 0
    messages: tuple[Message, ...] = ()


class DialogueOrchestrator:
    def __init__(
        self,
        llm: StreamingLLM,
        default_turn_count: int = DEFAULT_TURN_COUNT,
        template: str = SYSTEM_TEMPLATE,
    ) -> None:
        self._llm = llm
        self._default_turn_count = default_turn_count
        self._template = template
        self._live: dict[int, OrchestratorState] = {}

    @property
    def default_turn_count(self) -> int:
        return self._default_turn_count

    def state(self, dialogue_id: int) -> OrchestratorState | None:
        """State of a run in progress, or None when nothing is running."""
        return self._live.get(dialogue_id)

    async def generate(
        self,
        dialogue: Dialogue,
        characters: Mapping[str, Character],
        llms: Mapping[str, LLMModel],
        api_key: str,
        handler: DialogueEventHandler,
        turn_count: int | None = None,
    ) -> OrchestratorState:
        """Generate the dialogue, reporting progress to `handler`.

        Returns the terminal state with every message generated in this run.
        """
        turns = turn_count if turn_count is not None else self._default_turn_count
        configs = tuple(dialogue.character_configs)
        history: list[Message] = list(dialogue.messages)
        generated: list[Message] = []

        self._live[dialogue.id] = OrchestratorState(phase="running")
        logger.info(
            "dialogue=%s generation started: %d turns, %d characters",
            dialogue.id, turns, len(configs),
        )
        try:
            handler.handle(DialogueStart(
                dialogue_id=dialogue.id, character_configs=configs, turn_count=turns,
            ))
            for turn in range(turns):
                for index, config in enumerate(configs):
                    self._live[dialogue.id] = OrchestratorState(
                        phase="running", turn=turn + 1, index=index, messages=tuple(generated),
                    )
                    message = await self._run_turn(
                        dialogue, turn + 1, config, history, characters, llms, api_key, handler,
                    )
                    history.append(message)
                    generated.append(message)
            handler.handle(DialogueComplete(status="completed", turn_count=turns))
        except asyncio.CancelledError:
            logger.warning("dialogue=%s generation cancelled", dialogue.id)
            handler.handle(DialogueError(
                dialogue_id=dialogue.id, cause=GenerationCancelledError("Generation cancelled"),
            ))
            raise
        except Exception as e:
            logger.error("dialogue=%s generation failed: %s", dialogue.id, e, exc_info=True)
            handler.handle(DialogueError(dialogue_id=dialogue.id, cause=e))
            return OrchestratorState(phase="failed", messages=tuple(generated))
        finally:
            self._live.pop(dialogue.id, None)

        logger.info("dialogue=%s generation completed: %d messages", dialogue.id, len(generated))
        return OrchestratorState(
            phase="completed", turn=turns, index=len(configs) - 1, messages=tuple(generated),
        )

    async def _run_turn(
        self,
        dialogue: Dialogue,
        turn_number: int,
        config: CharacterConfig,
        history: list[Message],
        characters: Mapping[str, Character],
        llms: Mapping[str, LLMModel],
        api_key: str,
        handler: DialogueEventHandler,
    ) -> Message:
        handler.handle(TurnStart(character_config=config))

        llm_model = llms.get(config.llm_id)
        if llm_model is None:
            raise LookupError(f"Unknown LLM {config.llm_id!r}")
        messages = build_dialogue_messages(
            dialogue.scene_description, history, config, dialogue.character_configs,
            characters, self._template,
        )

        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()
        buffer: list[str] = []

        def _append(token: str) -> None:
            if done.done():
                return
            try:
                buffer.append(token)
                handler.handle(Token(character_config=config, token=token))
            except Exception as e:
                done.set_exception(e)

        def _finish() -> None:
            if not done.done():
                done.set_result(None)

        request_id = self._llm.stream_chat(
            llm_model.model,
            messages,
            api_key,
            lambda token: loop.call_soon_threadsafe(_append, token),
            lambda: loop.call_soon_threadsafe(_finish),
        )
        logger.debug(
            "dialogue=%s turn=%d character=%s request=%s",
            dialogue.id, turn_number, config.character_id, request_id,
        )
        try:
            await done
        except BaseException:
            self._llm.cancel_generation(request_id)
            raise

        content = "".join(buffer)
        handler.handle(TurnComplete(
            character_id=config.character_id,
            token_count=len(buffer),
            message_content=content,
            turn_number=turn_number,
        ))
        return Message(turn_number=turn_number, character_id=config.character_id, content=content)
