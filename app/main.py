"""FastAPI application factory."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.config import get_settings
from app.core.errors import CoachError
from app.core.logging import get_logger, setup_logging
from app.core.middleware import ObservabilityMiddleware
from app.core.streams import ChangeFeedPublisher, close_redis, get_redis
from app.database import engine
from app.services.auth import AuthVerifier
from app.services.coach import CoachService
from app.services.coach_persistence import TurnPersistence
from app.services.coach_repository import open_repository
from app.services.llm_stream import CompletionStreamer
from app.services.memory_extractor import PatternMemoryExtractor

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    change_feed = None
    if settings.change_feed_enabled:
        change_feed = ChangeFeedPublisher(
            await get_redis(),
            ttl=settings.change_feed_ttl,
            maxlen=settings.change_feed_maxlen,
        )

    streamer = CompletionStreamer()
    app.state.auth_verifier = AuthVerifier()
    app.state.coach_service = CoachService(
        streamer=streamer,
        persistence=TurnPersistence(
            repository_factory=open_repository,
            extractor=PatternMemoryExtractor(),
            change_feed=change_feed,
        ),
    )
    logger.info("app_started", model=settings.llm_model, change_feed=change_feed is not None)

    yield

    await streamer.aclose()
    await app.state.auth_verifier.aclose()
    await close_redis()
    await engine.dispose()
    logger.info("app_stopped")


async def coach_error_handler(request: Request, exc: CoachError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("request_failed", path=request.url.path, error=exc.public_message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else "Invalid request"
    return JSONResponse(status_code=422, content={"error": message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request_unhandled_error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Luminary Coach API", debug=settings.debug, lifespan=lifespan)

    app.add_middleware(ObservabilityMiddleware)
    app.add_exception_handler(CoachError, coach_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
