"""Prompt building for one character turn.

build_dialogue_messages() returns the exact message list the provider sees:

    system     persona of the active character, the scene, the other participants
    assistant  every earlier line spoken by the active character (verbatim)
    user       every earlier line spoken by someone else, attributed by name

The system message is a Handlebars template rendered with pybars.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

import pybars

from chorus.models import Character, CharacterConfig, ChatMessage, Message

SYSTEM_TEMPLATE = (
    "You are {{{char.name}}}. {{{char.short_description}}}\n"
    "{{#if char.description}}{{{char.description}}}\n{{/if}}"
    "\n"
    "Scene: {{{scene}}}\n"
    "Other participants: {{{others}}}\n"
    "\n"
    "Stay in character as {{{char.name}}}. Reply with your next line of dialogue "
    "only, without stage directions or your own name."
)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when the system template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_dialogue_messages(
    scene_description: str,
    history: Sequence[Message],
    active: CharacterConfig,
    configs: Sequence[CharacterConfig],
    characters: Mapping[str, Character],
    template: str = SYSTEM_TEMPLATE,
) -> list[ChatMessage]:
    """Build the ordered chat messages for `active`'s next turn."""
    try:
        me = characters[active.character_id]
    except KeyError:
        raise PromptError(f"Unknown character {active.character_id!r}") from None

    others = ", ".join(
        f"{characters[c.character_id].name} : {characters[c.character_id].short_description}"
        for c in configs
        if c.character_id != active.character_id
    )
    system = render_prompt(template, {
        "char": me.model_dump(),
        "scene": scene_description,
        "others": others,
    })

    messages = [ChatMessage(role="system", content=system)]
    for msg in history:
        if msg.character_id == me.id:
            messages.append(ChatMessage(role="assistant", content=msg.content))
        else:
            speaker = characters.get(msg.character_id)
            name = speaker.name if speaker else msg.character_id
            messages.append(ChatMessage(role="user", content=f'{name} said "{msg.content}"'))
    return messages
