"""JSON file storage.

All state lives in flat JSON files under a configurable base directory.
There is no database or ORM — reads and writes go through plain helper
methods that load and dump JSON, serialised by a single lock.

Directory layout:

    {base}/
      characters.json         ← list of Character objects
      llms.json               ← list of LLMModel objects
      api_keys.json           ← {user_id: key}
      dialogues/
        {id}.json             ← Dialogue with its append-only messages

Dialogue writes (save_message, update_status, get_dialogue) check ownership
against the principal in scope; see chorus.security.
"""

from __future__ import annotations

import json
import re
import threading
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from chorus.models import Character, CharacterConfig, Dialogue, DialogueStatus, LLMModel, Message
from chorus.security import AccessDeniedError, require_principal

MIN_CHARACTERS = 2
MAX_CHARACTERS = 3


class NotFoundError(LookupError):
    """Raised when a dialogue, character or LLM does not exist."""


def slugify(name: str) -> str:
    """Convert a display name to an id.

    "Sir Reginald O'Hare" → "sir-reginald-ohare"
    """
    text = unicodedata.normalize("NFKD", name)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._dialogue_root = self._base / "dialogues"
        self._dialogue_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _dialogue_file(self, dialogue_id: int) -> Path:
        return self._dialogue_root / f"{dialogue_id}.json"

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def get_characters(self, owner: str | None = None) -> list[Character]:
        """Shared characters plus the ones owned by `owner`."""
        raw = self._read_json(self._base / "characters.json", [])
        chars = [Character.model_validate(c) for c in raw]
        return [c for c in chars if c.owner is None or c.owner == owner]

    def get_character(self, character_id: str) -> Character | None:
        raw = self._read_json(self._base / "characters.json", [])
        for c in raw:
            if c.get("id") == character_id:
                return Character.model_validate(c)
        return None

    def save_character(self, character: Character) -> None:
        """Upsert a character by id."""
        with self._lock:
            path = self._base / "characters.json"
            chars = [Character.model_validate(c) for c in self._read_json(path, [])]
            for i, c in enumerate(chars):
                if c.id == character.id:
                    chars[i] = character
                    break
            else:
                chars.append(character)
            self._write_json(path, [c.model_dump() for c in chars])

    # ------------------------------------------------------------------
    # LLMs
    # ------------------------------------------------------------------

    def get_llms(self) -> list[LLMModel]:
        raw = self._read_json(self._base / "llms.json", [])
        return [LLMModel.model_validate(m) for m in raw]

    def get_llm(self, llm_id: str) -> LLMModel | None:
        for m in self.get_llms():
            if m.id == llm_id:
                return m
        return None

    def save_llm(self, llm: LLMModel) -> None:
        """Upsert an LLM by id."""
        with self._lock:
            llms = self.get_llms()
            for i, m in enumerate(llms):
                if m.id == llm.id:
                    llms[i] = llm
                    break
            else:
                llms.append(llm)
            self._write_json(self._base / "llms.json", [m.model_dump() for m in llms])

    # ------------------------------------------------------------------
    # API keys (stored as given; one per user)
    # ------------------------------------------------------------------

    def get_api_key(self, user_id: str) -> str | None:
        keys = self._read_json(self._base / "api_keys.json", {})
        return keys.get(user_id) or None

    def set_api_key(self, user_id: str, key: str | None) -> None:
        with self._lock:
            path = self._base / "api_keys.json"
            keys = self._read_json(path, {})
            if key:
                keys[user_id] = key
            else:
                keys.pop(user_id, None)
            self._write_json(path, keys)

    # ------------------------------------------------------------------
    # Dialogues
    # ------------------------------------------------------------------

    def _next_dialogue_id(self) -> int:
        ids = [int(p.stem) for p in self._dialogue_root.glob("*.json") if p.stem.isdigit()]
        return max(ids, default=0) + 1

    def _load(self, dialogue_id: int) -> Dialogue:
        path = self._dialogue_file(dialogue_id)
        if not path.exists():
            raise NotFoundError(f"Dialogue {dialogue_id} not found")
        return Dialogue.model_validate_json(path.read_text())

    def _load_owned(self, dialogue_id: int) -> Dialogue:
        principal = require_principal()
        dialogue = self._load(dialogue_id)
        if dialogue.owner != principal.user_id:
            raise AccessDeniedError(
                f"User {principal.user_id!r} may not access dialogue {dialogue_id}"
            )
        return dialogue

    def _save(self, dialogue: Dialogue) -> None:
        self._dialogue_file(dialogue.id).write_text(dialogue.model_dump_json(indent=2))

    def create_dialogue(
        self,
        owner: str,
        scene_description: str,
        character_configs: list[CharacterConfig],
        name: str | None = None,
    ) -> Dialogue:
        if not MIN_CHARACTERS <= len(character_configs) <= MAX_CHARACTERS:
            raise ValueError(
                f"A dialogue needs {MIN_CHARACTERS}-{MAX_CHARACTERS} characters, "
                f"got {len(character_configs)}"
            )
        ids = [c.character_id for c in character_configs]
        if len(set(ids)) != len(ids):
            raise ValueError("Each character may appear only once in a dialogue")

        with self._lock:
            fields: dict[str, Any] = {}
            if name:
                fields["name"] = name
            dialogue = Dialogue(
                id=self._next_dialogue_id(),
                owner=owner,
                scene_description=scene_description,
                character_configs=list(character_configs),
                **fields,
            )
            self._save(dialogue)
        return dialogue

    def get_dialogue(self, dialogue_id: int) -> Dialogue:
        """Load a dialogue owned by the principal in scope."""
        return self._load_owned(dialogue_id)

    def list_dialogues(self, owner: str) -> list[Dialogue]:
        """All dialogues of `owner`, newest first."""
        dialogues = [
            Dialogue.model_validate_json(p.read_text())
            for p in self._dialogue_root.glob("*.json")
        ]
        mine = [d for d in dialogues if d.owner == owner]
        return sorted(mine, key=lambda d: d.id, reverse=True)

    def count_dialogues(self, owner: str) -> int:
        return len(self.list_dialogues(owner))

    def save_message(
        self, dialogue_id: int, character_id: str, content: str, turn_number: int
    ) -> Message:
        """Append one message to a dialogue's history."""
        with self._lock:
            dialogue = self._load_owned(dialogue_id)
            message = Message(turn_number=turn_number, character_id=character_id, content=content)
            dialogue.messages.append(message)
            dialogue.turn_count = max(dialogue.turn_count, turn_number)
            dialogue.updated_at = datetime.now(timezone.utc)
            self._save(dialogue)
        return message

    def update_status(self, dialogue_id: int, status: DialogueStatus) -> Dialogue:
        with self._lock:
            dialogue = self._load_owned(dialogue_id)
            dialogue.status = status
            dialogue.updated_at = datetime.now(timezone.utc)
            self._save(dialogue)
        return dialogue
