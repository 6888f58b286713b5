"""
Main entry point for the chorus service.

Creates the FastAPI application instance for uvicorn:

    uvicorn chorus.main:app --port 8090
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chorus import __version__
from chorus.api.error_handlers import register_error_handlers
from chorus.api.routes.chats import router as chats_router
from chorus.api.routes.chats import set_orchestrator
from chorus.api.routes.health import router as health_router
from chorus.api.routes.health import set_service_start_time
from chorus.conversation.orchestrator import ConversationOrchestrator, ModeSpec
from chorus.conversation.registry import ModelRegistry
from chorus.conversation.store import InMemoryConversationStore
from chorus.core.config import Settings, get_settings
from chorus.core.http import HTTPClientFactory
from chorus.core.logging import configure_logging, get_logger
from chorus.dsl.loader import load_dsl_file
from chorus.modes.base import ModeType
from chorus.streaming.transport import HttpxChatTransport


# Configure structured logging on module load
configure_logging()
logger = get_logger(__name__)


def build_orchestrator(settings: Settings) -> tuple[ConversationOrchestrator, HttpxChatTransport]:
    """Wire store, registry, transport and default mode from settings."""
    if settings.models_file:
        registry = ModelRegistry.from_yaml(settings.models_file)
    else:
        logger.warning("No models file configured, starting with an empty registry")
        registry = ModelRegistry()

    default_mode: ModeSpec = ModeType.ISOLATED
    if settings.dsl_file:
        dsl = load_dsl_file(settings.dsl_file)
        logger.info("Loaded default DSL conversation", name=dsl.name, phases=len(dsl.phases))
        default_mode = dsl

    transport = HttpxChatTransport(factory=HTTPClientFactory(settings))
    orchestrator = ConversationOrchestrator(
        store=InMemoryConversationStore(),
        registry=registry,
        transport=transport,
        settings=settings,
        default_mode=default_mode,
    )
    return orchestrator, transport


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    On startup: build the orchestrator and its HTTP transport
    On shutdown: close the transport's client
    """
    settings = get_settings()
    logger.info("Starting chorus service", port=settings.port, environment=settings.environment)

    set_service_start_time()
    orchestrator, transport = build_orchestrator(settings)
    set_orchestrator(orchestrator)
    app.state.orchestrator = orchestrator
    logger.info("Model registry loaded", models=len(orchestrator.registry))

    yield

    logger.info("Shutting down chorus service")
    set_orchestrator(None)
    await transport.aclose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Chorus",
        description="Multi-model conversation orchestration",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(chats_router)

    return app


# Create application instance
app = create_app()
