"""Fan-out of generation events to several handlers.

The orchestrator only ever talks to one DialogueEventHandler. The composite
forwards each event to every registered handler in order, so the SSE
connection and the persistence layer stay independent: a handler that raises
is logged and skipped, and the remaining handlers still receive the event.

Handlers run on a background worker, far from the request that opened the
stream. The principal captured at that point is installed around every
handler call and reset right after it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from chorus.events import (
    DialogueComplete,
    DialogueError,
    DialogueEventHandler,
    DialogueStart,
    Token,
    TurnComplete,
    TurnStart,
)
from chorus.security import AccessDeniedError, Principal, principal_scope

logger = logging.getLogger(__name__)


class CompositeEventHandler(DialogueEventHandler):
    def __init__(
        self,
        dialogue_id: int,
        handlers: Sequence[DialogueEventHandler],
        principal: Principal | None = None,
    ) -> None:
        self._dialogue_id = dialogue_id
        self._handlers = tuple(handlers)
        self._principal = principal
        logger.debug(
            "dialogue=%s composite handler with %d handlers", dialogue_id, len(self._handlers)
        )

    @property
    def handlers(self) -> tuple[DialogueEventHandler, ...]:
        return self._handlers

    def _deliver(self, method: str, event: object, label: str) -> None:
        for handler in self._handlers:
            try:
                with principal_scope(self._principal):
                    getattr(handler, method)(event)
            except AccessDeniedError as e:
                logger.warning(
                    "dialogue=%s access denied in %s while handling %s: %s",
                    self._dialogue_id, type(handler).__name__, label, e,
                )
            except Exception:
                logger.exception(
                    "dialogue=%s %s failed while handling %s",
                    self._dialogue_id, type(handler).__name__, label,
                )

    def on_dialogue_start(self, event: DialogueStart) -> None:
        self._deliver("on_dialogue_start", event, "dialogue start")

    def on_character_start(self, event: TurnStart) -> None:
        self._deliver("on_character_start", event, "character start")

    def on_token(self, event: Token) -> None:
        self._deliver("on_token", event, "token")

    def on_character_complete(self, event: TurnComplete) -> None:
        self._deliver("on_character_complete", event, "character complete")

    def on_dialogue_complete(self, event: DialogueComplete) -> None:
        self._deliver("on_dialogue_complete", event, "dialogue complete")

    def on_error(self, event: DialogueError) -> None:
        self._deliver("on_error", event, "error")
