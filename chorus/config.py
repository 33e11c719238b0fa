"""Runtime settings, read from the environment (and .env via python-dotenv).

    DATA_DIR                    storage directory (default ./data)
    LOG_LEVEL                   root log level (default INFO)
    OPENROUTER_BASE_URL         provider API root
    OPENROUTER_API_KEY          fallback key for users without a stored one
    OPENROUTER_CONNECT_TIMEOUT  seconds (default 30)
    OPENROUTER_READ_TIMEOUT     seconds (default 120)
    OPENROUTER_MAX_TOKENS       optional max_tokens per completion
    LLM_MOCK                    "1"/"true" streams canned lines instead
    DIALOGUE_DEFAULT_TURNS      turns when a request gives no length (default 5)
    DIALOGUE_LIMIT_PER_USER     max stored dialogues per user (0 = unlimited)
    STREAM_TIMEOUT              SSE inactivity timeout in seconds (default 1800)
    GENERATION_WORKERS          concurrent dialogues (default 5)
    GENERATION_QUEUE_SIZE       dialogues allowed to wait (default 25)
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from chorus.executor import DEFAULT_QUEUE_SIZE, DEFAULT_WORKERS
from chorus.llm import DEFAULT_BASE_URL
from chorus.orchestrator import DEFAULT_TURN_COUNT
from chorus.sse import STREAM_TIMEOUT

ROOT = Path(__file__).parent.parent
DEFAULT_DATA_DIR = ROOT / "data"


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    log_level: str = "INFO"

    openrouter_base_url: str = DEFAULT_BASE_URL
    openrouter_api_key: str | None = None
    openrouter_connect_timeout: float = 30.0
    openrouter_read_timeout: float = 120.0
    openrouter_max_tokens: int | None = None
    llm_mock: bool = False

    dialogue_default_turns: int = DEFAULT_TURN_COUNT
    dialogue_limit_per_user: int = 0
    stream_timeout: float = STREAM_TIMEOUT
    generation_workers: int = DEFAULT_WORKERS
    generation_queue_size: int = DEFAULT_QUEUE_SIZE

    @classmethod
    def from_env(cls, env_file: Path | None = ROOT / ".env") -> Settings:
        if env_file is not None:
            load_dotenv(env_file)

        values: dict[str, object] = {"llm_mock": _flag(os.getenv("LLM_MOCK"))}
        for field in (
            "data_dir",
            "log_level",
            "openrouter_base_url",
            "openrouter_api_key",
            "openrouter_connect_timeout",
            "openrouter_read_timeout",
            "openrouter_max_tokens",
            "dialogue_default_turns",
            "dialogue_limit_per_user",
            "stream_timeout",
            "generation_workers",
            "generation_queue_size",
        ):
            raw = os.getenv(field.upper())
            if raw:
                values[field] = raw
        return cls.model_validate(values)
