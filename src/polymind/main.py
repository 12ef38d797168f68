"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from polymind import __version__
from polymind.api.ratelimit import limiter, rate_limit_exceeded_handler
from polymind.api.router import api_router
from polymind.config import Settings, get_settings
from polymind.domain.chat.context_manager import ContextManager
from polymind.domain.chat.orchestrator import ChatOrchestrator
from polymind.infrastructure.database.connection import dispose_engine, get_session_factory
from polymind.infrastructure.database.repositories import (
    SqlContextStore,
    SqlMessageStore,
    SqlRoomDirectory,
)
from polymind.infrastructure.llm.registry import ProviderRegistry
from polymind.infrastructure.notify.redis_notifier import RedisNotifier
from polymind.infrastructure.search.factory import build_search_provider, close_search_provider
from polymind.observability.metrics import setup_metrics
from polymind.shared.exceptions import (
    ConfigurationError,
    NotFoundError,
    PolymindError,
    TransportError,
    VendorError,
)
from polymind.shared.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_chat_services(app: FastAPI, settings: Settings) -> None:
    """Attach the registry, stores and orchestrator to ``app.state``.

    Anything already present (e.g. a test double) is kept.
    """
    state = app.state
    if getattr(state, "provider_registry", None) is None:
        state.provider_registry = ProviderRegistry.from_settings(settings)
    if getattr(state, "search_provider", None) is None:
        state.search_provider = build_search_provider(settings)
    if getattr(state, "redis_client", None) is None:
        state.redis_client = redis.from_url(str(settings.redis_url))

    if getattr(state, "context_manager", None) is None or getattr(
        state, "chat_orchestrator", None
    ) is None:
        session_factory = get_session_factory(settings)
        message_store = SqlMessageStore(session_factory)
        state.context_manager = getattr(state, "context_manager", None) or ContextManager(
            SqlContextStore(session_factory),
            message_store,
            max_messages=settings.context_max_messages,
            max_tokens=settings.context_max_tokens,
        )
        state.chat_orchestrator = getattr(state, "chat_orchestrator", None) or ChatOrchestrator(
            registry=state.provider_registry,
            context_manager=state.context_manager,
            message_store=message_store,
            room_directory=SqlRoomDirectory(session_factory),
            notifier=RedisNotifier(state.redis_client, settings.notify_channel_prefix),
            search=state.search_provider,
            search_top_k=settings.search_top_k,
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown events."""
    setup_logging()
    logger.info("polymind_starting", version=__version__)

    build_chat_services(app, get_settings())

    yield

    logger.info("polymind_stopping")
    registry = getattr(app.state, "provider_registry", None)
    if registry is not None:
        await registry.aclose()
    await close_search_provider(getattr(app.state, "search_provider", None))

    redis_client = getattr(app.state, "redis_client", None)
    if redis_client is not None:
        close = getattr(redis_client, "aclose", None)
        if close is not None:
            await close()

    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Polymind API",
        description="Multi-agent chat rooms across text-generation vendors",
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    if settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "X-Request-ID"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api/v1")

    setup_metrics(app)

    return app


# Looked up along the exception MRO, so the most specific entry wins
ERROR_RESPONSES: dict[type[PolymindError], tuple[int, str]] = {
    ConfigurationError: (400, "configuration_error"),
    NotFoundError: (404, "not_found"),
    VendorError: (502, "vendor_error"),
    TransportError: (504, "transport_error"),
}


def _polymind_error_response(exc: PolymindError) -> JSONResponse:
    for error_cls in type(exc).__mro__:
        if error_cls in ERROR_RESPONSES:
            status_code, code = ERROR_RESPONSES[error_cls]
            break
    else:
        logger.error("unhandled_error", error=exc.message, details=exc.details)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "An internal error occurred"},
        )

    if status_code >= 500:
        logger.warning(code, error=exc.message, provider=getattr(exc, "provider", None))
    return JSONResponse(
        status_code=status_code,
        content={"error": code, "message": exc.message, "details": exc.details},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy and request validation onto JSON error bodies."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        _ = request
        return JSONResponse(
            status_code=422,
            content={
                "error": "validation_error",
                "message": "Request validation failed",
                "details": {"errors": exc.errors()},
            },
        )

    @app.exception_handler(PolymindError)
    async def polymind_error_handler(request: Request, exc: PolymindError) -> JSONResponse:
        _ = request
        return _polymind_error_response(exc)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        _ = request
        logger.exception("unexpected_error", error=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred",
            },
        )


app = create_app()
