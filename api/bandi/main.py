from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from bandi.api.router import api_router
from bandi.core.config import get_settings
from bandi.core.telemetry import TelemetryRuntime, configure_logging, setup_api_telemetry
from bandi.services.lifecycle import get_assignment_lifecycle
from bandi.services.notices import get_notice_coordinator
from bandi.services.notifier import get_notifier
from bandi.services.repository import get_gateway
from bandi.services.tables import (
    get_assignment_repository,
    get_candidature_repository,
    get_rating_repository,
    get_user_repository,
)

settings = get_settings()
configure_logging(settings)
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)

CACHED_FACTORIES = (
    get_notice_coordinator,
    get_assignment_lifecycle,
    get_assignment_repository,
    get_candidature_repository,
    get_rating_repository,
    get_user_repository,
    get_notifier,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        yield
    finally:
        if _telemetry_runtime is not None:
            _telemetry_runtime.shutdown()
        await get_notifier().drain()
        # Ensure asyncpg pool shuts down on app teardown.
        await get_gateway().close()
        get_gateway.cache_clear()
        for factory in CACHED_FACTORIES:
            factory.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
    logger.info("rejected payload path=%s errors=%s", request.url.path, len(messages))
    return JSONResponse(
        status_code=status.HTTP_412_PRECONDITION_FAILED,
        content={"error": "; ".join(messages)},
    )


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
