import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from backend.routes import router
from chorus.config import Settings
from chorus.executor import GenerationExecutor
from chorus.llm import MockLLM, OpenRouterClient, StreamingLLM
from chorus.orchestrator import DialogueOrchestrator
from chorus.registry import ConnectionRegistry
from chorus.service import DialogueStreamService
from chorus.storage import Storage

MOCK_API_KEY = "mock"

logger = logging.getLogger(__name__)


def build_llm(settings: Settings) -> StreamingLLM:
    if settings.llm_mock:
        return MockLLM()
    return OpenRouterClient(
        base_url=settings.openrouter_base_url,
        connect_timeout=settings.openrouter_connect_timeout,
        read_timeout=settings.openrouter_read_timeout,
        max_tokens=settings.openrouter_max_tokens,
    )


def create_app(
    data_dir: Path | None = None,
    settings: Settings | None = None,
    llm: StreamingLLM | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    if data_dir is not None:
        settings = settings.model_copy(update={"data_dir": data_dir})
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage = Storage(settings.data_dir)
    executor = GenerationExecutor(settings.generation_workers, settings.generation_queue_size)
    # Mock mode still goes through key validation, so give it a placeholder.
    fallback_key = settings.openrouter_api_key or (MOCK_API_KEY if settings.llm_mock else None)
    service = DialogueStreamService(
        storage,
        DialogueOrchestrator(llm or build_llm(settings), settings.dialogue_default_turns),
        executor,
        ConnectionRegistry(),
        fallback_api_key=fallback_key,
        dialogue_limit=settings.dialogue_limit_per_user,
        stream_timeout=settings.stream_timeout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        executor.start()
        logger.info("Chorus started (data dir %s, mock=%s)", settings.data_dir, settings.llm_mock)
        try:
            yield
        finally:
            service.shutdown()
            await executor.shutdown()

    app = FastAPI(title="Chorus", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.service = service
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
