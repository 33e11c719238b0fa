"""Tests for Handlebars prompt rendering and per-turn message building."""

import pytest

from chorus.models import Character, CharacterConfig, Message
from chorus.prompts import PromptError, build_dialogue_messages, render_prompt

CHARS = {
    "ada": Character(id="ada", name="Ada", short_description="A mathematician"),
    "brom": Character(id="brom", name="Brom", short_description="A blacksmith", description="Gruff."),
    "cyra": Character(id="cyra", name="Cyra", short_description="A cartographer"),
}
ADA = CharacterConfig(character_id="ada", llm_id="fast")
BROM = CharacterConfig(character_id="brom", llm_id="smart")
CYRA = CharacterConfig(character_id="cyra", llm_id="fast")


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Hello {{name}}!", {"name": "World"}) == "Hello World!"


def test_render_triple_stash_is_not_escaped():
    assert render_prompt("{{{x}}}", {"x": 'a "quoted" <b>'}) == 'a "quoted" <b>'


def test_render_if_conditional():
    tpl = "{{#if show}}yes{{else}}no{{/if}}"
    assert render_prompt(tpl, {"show": True}) == "yes"
    assert render_prompt(tpl, {"show": False}) == "no"


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── build_dialogue_messages ──────────────────────────────────


def test_first_turn_is_system_message_only():
    msgs = build_dialogue_messages("A tavern at dusk", [], ADA, [ADA, BROM], CHARS)
    assert len(msgs) == 1
    assert msgs[0].role == "system"


def test_system_message_describes_character_scene_and_others():
    system = build_dialogue_messages("A tavern at dusk", [], ADA, [ADA, BROM, CYRA], CHARS)[0].content
    assert "You are Ada. A mathematician" in system
    assert "Scene: A tavern at dusk" in system
    assert "Other participants: Brom : A blacksmith, Cyra : A cartographer" in system


def test_optional_description_included_when_present():
    with_desc = build_dialogue_messages("s", [], BROM, [ADA, BROM], CHARS)[0].content
    without = build_dialogue_messages("s", [], ADA, [ADA, BROM], CHARS)[0].content
    assert "Gruff." in with_desc
    assert "Gruff." not in without


def test_history_roles_depend_on_speaker():
    history = [
        Message(turn_number=1, character_id="ada", content="Hi there"),
        Message(turn_number=1, character_id="brom", content="Hello"),
    ]
    msgs = build_dialogue_messages("s", history, ADA, [ADA, BROM], CHARS)
    assert [(m.role, m.content) for m in msgs[1:]] == [
        ("assistant", "Hi there"),
        ("user", 'Brom said "Hello"'),
    ]

    msgs = build_dialogue_messages("s", history, BROM, [ADA, BROM], CHARS)
    assert [(m.role, m.content) for m in msgs[1:]] == [
        ("user", 'Ada said "Hi there"'),
        ("assistant", "Hello"),
    ]


def test_empty_line_kept_in_history():
    history = [Message(turn_number=1, character_id="brom", content="")]
    msgs = build_dialogue_messages("s", history, ADA, [ADA, BROM], CHARS)
    assert msgs[1].content == 'Brom said ""'


def test_unknown_active_character_raises():
    ghost = CharacterConfig(character_id="ghost", llm_id="fast")
    with pytest.raises(PromptError, match="ghost"):
        build_dialogue_messages("s", [], ghost, [ADA, ghost], CHARS)


def test_custom_template():
    msgs = build_dialogue_messages("s", [], ADA, [ADA, BROM], CHARS, template="I am {{char.name}}")
    assert msgs[0].content == "I am Ada"
