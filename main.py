import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from controllers.command_controller import CommandController
from models.errors import ConfigurationError
from routes.session_route import router as session_router
from routes.telegram_route import router as telegram_router
from services.batch_pipeline import BatchPipeline
from services.capture.screen_capture import ScreenCaptureService
from services.lifecycle import LifecycleSupervisor
from services.openai.answer_service import AnswerService
from services.openai.text_extractor import TextExtractionService
from services.session_store import SessionStore
from services.telegram.client import TelegramClient
from utils.config import Settings, load_settings

LOGGER = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.verbose_logging else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # keep request-level chatter from the HTTP clients out of debug output
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_components(app: FastAPI, settings: Settings) -> LifecycleSupervisor:
    """Create every service for ``settings`` and attach them to ``app.state``."""
    ocr_client = AsyncOpenAI(api_key=settings.ocr_api_key)
    answer_client = AsyncOpenAI(api_key=settings.answer_api_key)
    transport = TelegramClient(settings.bot_token)

    store = SessionStore(settings.session_timeout_seconds)
    capture = ScreenCaptureService(settings)
    extractor = TextExtractionService(ocr_client, enabled=settings.ocr_enabled, model=settings.ocr_model)
    answerer = AnswerService(answer_client, enabled=settings.answer_enabled, model=settings.answer_model)
    pipeline = BatchPipeline(store, extractor, answerer)
    controller = CommandController(settings, store, capture, extractor, answerer, pipeline, transport)
    supervisor = LifecycleSupervisor(settings, store, transport, controller.dispatch)

    app.state.ocr_client = ocr_client
    app.state.answer_client = answer_client
    app.state.transport = transport
    app.state.session_store = store
    app.state.controller = controller
    app.state.supervisor = supervisor
    return supervisor


async def _close_clients(app: FastAPI) -> None:
    transport = getattr(app.state, "transport", None)
    if transport is not None:
        await transport.aclose()
    for name in ("ocr_client", "answer_client"):
        client = getattr(app.state, name, None)
        if client is None:
            continue
        try:
            await client.close()
        except Exception as exc:
            LOGGER.warning("Error closing %s: %s", name, exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to:
      - build the session store, adapters, controller and supervisor
      - connect to the chat transport (with retries) and start receiving updates
    and, on shutdown, stop receiving updates and close every client.
    """
    settings: Settings = app.state.settings
    supervisor = build_components(app, settings)
    started = False
    try:
        if app.state.start_bot:
            await supervisor.start()
            started = True
        yield
    finally:
        if started:
            await supervisor.stop()
        await _close_clients(app)


def create_app(settings: Optional[Settings] = None, *, start_bot: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings or load_settings()
    app.state.start_bot = start_bot

    @app.get("/health")
    async def health(request: Request):
        """
        Report whether the bot is accepting chat events and how many sessions are live.
        """
        supervisor = getattr(request.app.state, "supervisor", None)
        store = getattr(request.app.state, "session_store", None)
        return {
            "ok": True,
            "accepting": bool(supervisor and supervisor.accepting),
            "sessions": len(store) if store is not None else 0,
            "feature_flags": request.app.state.settings.feature_flags(),
        }

    app.include_router(session_router)
    app.include_router(telegram_router)
    return app


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.INFO)
        LOGGER.error("Configuration error: %s", exc)
        sys.exit(2)
    configure_logging(settings)
    LOGGER.info("Environment variables validated.")
    # uvicorn turns SIGINT/SIGTERM into a lifespan shutdown and exits 0
    uvicorn.run(create_app(settings), host=settings.http_host, port=settings.http_port, log_config=None)


if __name__ == "__main__":
    main()
