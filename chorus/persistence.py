"""Persists generation progress as it happens.

    TurnComplete      -> storage.save_message(...)
    DialogueComplete  -> status "completed"
    DialogueError     -> status "failed"

Storage errors are not caught here; the composite dispatcher logs them and
keeps delivering to the other handlers.
"""

from __future__ import annotations

import logging

from chorus.events import DialogueComplete, DialogueError, DialogueEventHandler, TurnComplete
from chorus.storage import Storage

logger = logging.getLogger(__name__)


class PersistenceEventHandler(DialogueEventHandler):
    def __init__(self, dialogue_id: int, storage: Storage) -> None:
        self._dialogue_id = dialogue_id
        self._storage = storage

    def on_character_complete(self, event: TurnComplete) -> None:
        self._storage.save_message(
            self._dialogue_id, event.character_id, event.message_content, event.turn_number,
        )
        logger.debug(
            "dialogue=%s saved turn %d of %s",
            self._dialogue_id, event.turn_number, event.character_id,
        )

    def on_dialogue_complete(self, event: DialogueComplete) -> None:
        self._storage.update_status(self._dialogue_id, "completed")
        logger.info("dialogue=%s marked completed", self._dialogue_id)

    def on_error(self, event: DialogueError) -> None:
        self._storage.update_status(self._dialogue_id, "failed")
        logger.info("dialogue=%s marked failed", self._dialogue_id)
