"""HoloHost process entry point.

One process owns the Docker driver, the instance store and the realtime
broadcaster. HTTP exposes operator endpoints; clients follow their instance
over the /ws WebSocket.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from holohost import __version__
from holohost.app.dependencies import close_runtime, get_runtime, init_runtime
from holohost.app.websocket import router as websocket_router
from holohost.config import get_config
from holohost.core.errors import ErrorDetail, ErrorResponse, HoloHostError
from holohost.logging import setup_logging
from holohost.logging_schema import LogEvent

import holohost.metrics  # noqa: F401

_config = get_config()
setup_logging(_config.logging)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime, start polling, and tear everything down on exit."""
    runtime = await init_runtime(get_config())
    docker_ok = await runtime.driver.check_health()
    if not docker_ok:
        logger.warning(
            "Docker daemon unavailable at startup, instance operations will fail",
            extra={"event": LogEvent.DOCKER_UNAVAILABLE},
        )
    runtime.broadcaster.start()
    logger.info(
        "HoloHost started",
        extra={"event": LogEvent.APP_STARTED, "version": __version__, "docker": docker_ok},
    )

    try:
        yield
    finally:
        logger.info("HoloHost stopping", extra={"event": LogEvent.APP_STOPPED})
        await close_runtime()


app = FastAPI(
    title="HoloHost",
    description="Bridge instance orchestration and realtime monitoring",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_config.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HoloHostError)
async def holohost_error_handler(request: Request, exc: HoloHostError) -> JSONResponse:
    logger.warning(
        exc.message,
        extra={
            "event": LogEvent.HOLOHOST_ERROR,
            "error_code": exc.code.value,
            "status_code": exc.status_code,
            "path": request.url.path,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log with traceback; clients only see a generic envelope."""
    logger.exception(
        "Unhandled exception",
        extra={"event": LogEvent.UNHANDLED_EXCEPTION, "path": request.url.path},
    )
    body = ErrorResponse(error=ErrorDetail(code="INTERNAL_ERROR", message="Internal server error"))
    return JSONResponse(status_code=500, content=body.model_dump())


@app.get("/health")
async def health() -> dict:
    """Liveness for operators. An unreachable Docker daemon is reported, not fatal."""
    runtime = get_runtime()
    docker_ok = await runtime.driver.check_health()
    return {
        "status": "healthy",
        "version": __version__,
        "docker": "connected" if docker_ok else "unavailable",
    }


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(websocket_router)


def main() -> None:
    """Console entry point."""
    config = get_config()
    uvicorn.run(
        "holohost.app.main:app",
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
