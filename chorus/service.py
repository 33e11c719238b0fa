"""Opening and closing dialogue streams.

open_stream() does all the setup a streamed dialogue needs, synchronously
and before any event is emitted:

  1. resolve the user's API key
  2. enforce the per-user dialogue limit
  3. load the characters and LLMs (visible to the user)
  4. create the dialogue (in_progress)
  5. create the EventStream and register it
  6. wire SSE + persistence handlers into one composite bound to the user
  7. queue the orchestrator job on the executor

If any step fails, partial work is undone (stream closed with the error,
registry entry removed, dialogue marked failed) and the error is re-raised
for the web layer to map onto an HTTP status.
"""

from __future__ import annotations

import logging

from chorus.dispatch import CompositeEventHandler
from chorus.executor import GenerationExecutor
from chorus.models import Character, Dialogue, DialogueRequest, LLMModel
from chorus.orchestrator import DialogueOrchestrator
from chorus.persistence import PersistenceEventHandler
from chorus.registry import ConnectionRegistry
from chorus.security import AccessDeniedError, Principal, principal_scope
from chorus.sse import STREAM_TIMEOUT, EventStream, SseEventHandler
from chorus.storage import NotFoundError, Storage

logger = logging.getLogger(__name__)


class NoApiKeyError(Exception):
    """Raised when neither the user nor the server has a provider key."""


class DialogueLimitError(Exception):
    """Raised when a user already owns the maximum number of dialogues."""


class DialogueStreamService:
    def __init__(
        self,
        storage: Storage,
        orchestrator: DialogueOrchestrator,
        executor: GenerationExecutor,
        registry: ConnectionRegistry,
        fallback_api_key: str | None = None,
        dialogue_limit: int = 0,
        stream_timeout: float = STREAM_TIMEOUT,
    ) -> None:
        self._storage = storage
        self._orchestrator = orchestrator
        self._executor = executor
        self._registry = registry
        self._fallback_api_key = fallback_api_key
        self._dialogue_limit = dialogue_limit
        self._stream_timeout = stream_timeout

    @property
    def active_streams(self) -> int:
        return len(self._registry)

    # ------------------------------------------------------------------
    # Setup steps
    # ------------------------------------------------------------------

    def resolve_api_key(self, principal: Principal) -> str:
        key = self._storage.get_api_key(principal.user_id) or self._fallback_api_key
        if not key:
            raise NoApiKeyError("No API key configured; set one with PUT /api/api-key")
        return key

    def _check_limit(self, principal: Principal) -> None:
        if self._dialogue_limit <= 0:
            return
        count = self._storage.count_dialogues(principal.user_id)
        if count >= self._dialogue_limit:
            raise DialogueLimitError(
                f"Dialogue limit reached ({count}/{self._dialogue_limit})"
            )

    def _load_participants(
        self, request: DialogueRequest, principal: Principal
    ) -> tuple[dict[str, Character], dict[str, LLMModel]]:
        characters: dict[str, Character] = {}
        llms: dict[str, LLMModel] = {}
        for config in request.character_configs:
            char = self._storage.get_character(config.character_id)
            if char is None:
                raise NotFoundError(f"Character {config.character_id!r} not found")
            if char.owner is not None and char.owner != principal.user_id:
                raise AccessDeniedError(f"Character {config.character_id!r} is not yours")
            characters[char.id] = char

            llm = self._storage.get_llm(config.llm_id)
            if llm is None:
                raise NotFoundError(f"LLM {config.llm_id!r} not found")
            llms[llm.id] = llm
        return characters, llms

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def open_stream(
        self, request: DialogueRequest, principal: Principal
    ) -> tuple[Dialogue, EventStream]:
        api_key = self.resolve_api_key(principal)
        self._check_limit(principal)
        characters, llms = self._load_participants(request, principal)

        dialogue: Dialogue | None = None
        stream: EventStream | None = None
        try:
            dialogue = self._storage.create_dialogue(
                principal.user_id,
                request.scene_description,
                list(request.character_configs),
                request.name,
            )
            stream = EventStream(timeout=self._stream_timeout)
            self._registry.register(dialogue.id, stream)

            def _remove(dialogue_id: int, stream: EventStream = stream) -> None:
                self._registry.remove(dialogue_id, stream)

            handler = CompositeEventHandler(
                dialogue.id,
                [
                    SseEventHandler(dialogue.id, stream, _remove),
                    PersistenceEventHandler(dialogue.id, self._storage),
                ],
                principal,
            )

            async def _generate(dialogue: Dialogue = dialogue) -> None:
                await self._orchestrator.generate(
                    dialogue, characters, llms, api_key, handler, request.length,
                )

            self._executor.submit(_generate)
        except Exception as e:
            logger.error("Failed to start dialogue stream: %s", e)
            self._abort(dialogue, stream, principal, e)
            raise

        logger.info(
            "dialogue=%s stream opened for user %s (%d characters)",
            dialogue.id, principal.user_id, len(characters),
        )
        return dialogue, stream

    def _abort(
        self,
        dialogue: Dialogue | None,
        stream: EventStream | None,
        principal: Principal,
        error: Exception,
    ) -> None:
        if stream is not None:
            stream.complete_with_error(error)
        if dialogue is None:
            return
        if stream is not None:
            self._registry.remove(dialogue.id, stream)
        try:
            with principal_scope(principal):
                self._storage.update_status(dialogue.id, "failed")
        except Exception:
            logger.exception("dialogue=%s could not be marked failed", dialogue.id)

    def close_stream(self, dialogue_id: int) -> bool:
        """Close a live stream out of band. Generation keeps running."""
        stream = self._registry.get(dialogue_id)
        if stream is None:
            return False
        stream.complete()
        self._registry.remove(dialogue_id, stream)
        logger.info("dialogue=%s stream closed on request", dialogue_id)
        return True

    def shutdown(self) -> int:
        count = self._registry.close_all()
        if count:
            logger.info("Closed %d open dialogue streams", count)
        return count
