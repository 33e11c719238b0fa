"""Create demo characters and LLMs for development/testing."""

import shutil

from chorus.models import Character, LLMModel
from chorus.storage import Storage

DEMO_CHARACTERS = [
    Character(
        id="sherlock-holmes",
        name="Sherlock Holmes",
        short_description="A consulting detective with a gift for deduction.",
        description="Cold, precise and easily bored. Notices everything, "
        "explains only when it amuses him.",
    ),
    Character(
        id="marie-curie",
        name="Marie Curie",
        short_description="Physicist and chemist, pioneer of radioactivity.",
        description="Patient, methodical and stubborn about evidence. "
        "Speaks plainly and distrusts grand claims.",
    ),
    Character(
        id="captain-nemo",
        name="Captain Nemo",
        short_description="Reclusive commander of the submarine Nautilus.",
        description="Brilliant, bitter and proud. Loves the sea more than any nation.",
    ),
]

DEMO_LLMS = [
    LLMModel(id="gpt-4o-mini", name="GPT-4o mini", model="openai/gpt-4o-mini"),
    LLMModel(id="claude-3-haiku", name="Claude 3 Haiku", model="anthropic/claude-3-haiku"),
    LLMModel(id="llama-3-8b", name="Llama 3 8B Instruct", model="meta-llama/llama-3-8b-instruct"),
]


def create_demo_data(storage: Storage) -> None:
    """Wipe existing dialogues and (re)create the demo characters and LLMs."""
    dialogues = storage.base_path / "dialogues"
    if dialogues.exists():
        shutil.rmtree(dialogues)
    dialogues.mkdir(parents=True, exist_ok=True)

    for char in DEMO_CHARACTERS:
        storage.save_character(char)
    for llm in DEMO_LLMS:
        storage.save_llm(llm)
