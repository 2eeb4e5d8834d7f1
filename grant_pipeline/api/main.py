"""
FastAPI application entry point.

Wires the stage router and health checks onto one app and builds the
process-wide ModelManager, StageExecutor and Compressor once at startup.
"""

import logging
import time
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from .routers import health, stages
from .routers.stages import error_response
from ..models.manager import ModelManager
from ..pipeline.compressor import build_compressor
from ..pipeline.errors import MethodNotAllowed, StageValidationError
from ..pipeline.executor import StageExecutor
from ..pipeline.stages import API_PREFIX
from ..pipeline.validation import stage_validation_error

logger = logging.getLogger(__name__)

# Global application state
app_state = {}


def create_app(model_manager: Optional[ModelManager] = None) -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.

    A prebuilt ModelManager may be passed in (tests do this); otherwise one is
    loaded from the packaged or GRANT_PIPELINE_CONFIG configuration at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting Grant Pipeline API server")
        manager = model_manager or ModelManager()
        manager.warm_up()

        executor = StageExecutor(manager)
        executor.compressor = build_compressor(manager, executor)

        app_state["model_manager"] = manager
        app_state["executor"] = executor
        logger.info(
            f"Ready: {len(manager.config['tasks'])} stages, profiles {manager.profile_names}, "
            f"compressor {type(executor.compressor).__name__}"
        )

        yield  # Server runs here

        logger.info("Shutting down Grant Pipeline API server")
        await executor.compressor.aclose()
        manager.cleanup()
        app_state.clear()

    app = FastAPI(
        title="Grant Pipeline API",
        description="Staged LLM pipeline that turns RFPs and meeting notes into reviewed grant proposals",
        version=health.API_VERSION,
        lifespan=lifespan,
    )

    # Configure CORS middleware for frontend communication
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        t0 = time.perf_counter()
        response = await call_next(request)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({time.perf_counter() - t0:.2f}s)"
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return error_response(MethodNotAllowed(f"Method {request.method} not allowed", allowed=["POST"]))
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "kind": "NotFound" if exc.status_code == 404 else "HTTPError"},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        spec = stages.stage_for_path(request.url.path)
        if spec is not None:
            error = stage_validation_error(spec, exc.errors(), exc.body)
            logger.info(f"{spec.name} rejected request: {error.message}")
            return error_response(error)

        first = exc.errors()[0] if exc.errors() else {}
        location = [str(part) for part in first.get("loc", ()) if part not in ("query", "body")]
        return error_response(StageValidationError(
            first.get("msg", "Invalid request"),
            field=".".join(location) or None,
        ))

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(stages.router, prefix=API_PREFIX, tags=["stages"])

    @app.get("/")
    async def root():
        """Root endpoint with basic API information."""
        return {
            "name": "Grant Pipeline API",
            "version": health.API_VERSION,
            "status": "operational",
            "endpoints": {
                "health": "/health",
                "stages": API_PREFIX,
                "docs": "/docs",
            },
        }

    return app


# Create the FastAPI app instance
app = create_app()
