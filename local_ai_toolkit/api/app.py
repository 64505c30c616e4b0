import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from local_ai_toolkit.api import recording_router, service_router
from local_ai_toolkit.core.config import APP_VERSION
from local_ai_toolkit.core.di import (
    get_config,
    get_recognition_service,
    get_synthesis_service,
    get_transcription_service,
)
from local_ai_toolkit.core.errors import CapabilityError, ErrorKind
from local_ai_toolkit.core.logger import get_logger, setup_logging

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging on startup; stop engine lanes and any live recording on shutdown."""
    cfg = get_config()
    setup_logging(cfg.logging, cfg.paths.data_dir)
    logger.info("local-ai-toolkit %s serving on %s:%s", APP_VERSION, cfg.server.host, cfg.server.port)
    if not cfg.server.auth_key:
        logger.warning("No auth_key configured, gateway accepts unauthenticated requests")
    yield
    # only services that were actually created
    for provider in (get_transcription_service, get_synthesis_service, get_recognition_service):
        if provider.cache_info().currsize:
            provider().shutdown()
    logger.info("Shutdown complete")


def _error_response(code: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})


def _http_error_code(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase.replace(" ", "")
    except ValueError:
        return "HTTPError"


async def capability_error_handler(request: Request, exc: CapabilityError) -> JSONResponse:
    if exc.kind is ErrorKind.CANCELLED:
        logger.info("%s %s cancelled", request.method, request.url.path)
    elif exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc.cause)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return _error_response(exc.kind.value, exc.message, exc.status_code)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(_http_error_code(exc.status_code), str(exc.detail), exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg', 'invalid')}")
    logger.warning("%s %s invalid request: %s", request.method, request.url.path, "; ".join(problems))
    return _error_response(ErrorKind.INVALID_REQUEST.value, "; ".join(problems) or "Invalid request", 422)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s crashed", request.method, request.url.path)
    return _error_response("InternalError", "Internal server error", 500)


app = FastAPI(
    title="local-ai-toolkit",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_exception_handler(CapabilityError, capability_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %d (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


# Include routers
app.include_router(service_router.health_router)
app.include_router(service_router.router)
app.include_router(recording_router.router)
