"""
Backend Server - FastAPI Application

Custom API server managed by the lifecycle manager. Exposes /health for
readiness polling; the app itself holds no global state.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import BACKEND_VERSION, get_app_env, DEFAULT_APP_ENV
from .constants import EndpointPath, ErrorTitle, ErrorMessage, SERVER_NAME
from .routes import health
from .runtime import RuntimeContext
from .types import ServerInfo, ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - startup and shutdown"""
    runtime: RuntimeContext = app.state.runtime
    logger.info(f"Backend starting on port {runtime.port}...")

    yield

    logger.info("Backend shutting down...")


async def not_found_handler(request: Request, exc: StarletteHTTPException):
    """JSON 404 for unknown routes; other HTTP errors keep FastAPI's format"""
    if exc.status_code != status.HTTP_404_NOT_FOUND:
        return await http_exception_handler(request, exc)

    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(
            error=ErrorTitle.NOT_FOUND.value,
            message=ErrorMessage.NOT_FOUND.value,
        ).model_dump(),
    )


async def server_error_handler(request: Request, exc: Exception):
    """
    Answer 500 and report the fault to the lifecycle manager.

    An uncaught exception in request handling is a termination trigger.
    """
    logger.error(f"Server error: {exc}")

    message = ErrorMessage.INTERNAL.value
    if get_app_env() == DEFAULT_APP_ENV:
        message = str(exc)

    runtime: RuntimeContext = request.app.state.runtime
    runtime.report_fault(exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error=ErrorTitle.INTERNAL.value,
            message=message,
        ).model_dump(),
    )


def create_app(runtime: RuntimeContext) -> FastAPI:
    """
    Build the backend application.

    Args:
        runtime: Instance state (port, start time, fault callback)

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title=SERVER_NAME,
        description="Backend API server with a readiness endpoint for the launcher.",
        version=BACKEND_VERSION,
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "health",
                "description": "Health check and server status"
            },
        ],
    )
    app.state.runtime = runtime

    app.add_exception_handler(StarletteHTTPException, not_found_handler)
    app.add_exception_handler(Exception, server_error_handler)

    app.include_router(health.router, tags=["health"])

    @app.get(EndpointPath.ROOT.value, response_model=ServerInfo)
    async def root():
        """Root endpoint - verifies the server is responding"""
        return ServerInfo(message=SERVER_NAME, version=BACKEND_VERSION)

    return app


if __name__ == "__main__":
    import sys
    from server_mgmt.lifecycle import start_backend

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s"
    )

    sys.exit(start_backend())
