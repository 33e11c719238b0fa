import os
import shutil
from pathlib import Path

import pytest

TEST_DATA_DIR = Path("data-tests")

# backend.app builds a default app at import time; keep it out of ./data
os.environ.setdefault("DATA_DIR", str(TEST_DATA_DIR))

from chorus.models import Character, CharacterConfig, LLMModel  # noqa: E402
from chorus.security import Principal  # noqa: E402
from chorus.storage import Storage  # noqa: E402

CHARACTERS = [
    Character(id="ada", name="Ada", short_description="A mathematician"),
    Character(id="brom", name="Brom", short_description="A blacksmith", description="Gruff."),
    Character(id="cyra", name="Cyra", short_description="A cartographer"),
]

LLMS = [
    LLMModel(id="fast", name="Fast", model="vendor/fast-1"),
    LLMModel(id="smart", name="Smart", model="vendor/smart-2"),
]


@pytest.fixture(autouse=True, scope="session")
def clean_test_data():
    """Wipe data-tests/ once per run."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it


@pytest.fixture
def storage(tmp_path: Path) -> Storage:
    """Storage seeded with three shared characters and two LLMs."""
    s = Storage(tmp_path / "data")
    for c in CHARACTERS:
        s.save_character(c)
    for m in LLMS:
        s.save_llm(m)
    return s


@pytest.fixture
def principal() -> Principal:
    return Principal(user_id="u1")


@pytest.fixture
def configs() -> list[CharacterConfig]:
    return [
        CharacterConfig(character_id="ada", llm_id="fast"),
        CharacterConfig(character_id="brom", llm_id="smart"),
    ]
