"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from meal_logger.api.analysis import router as analysis_router
from meal_logger.api.auth import router as auth_router
from meal_logger.api.conversations import router as conversations_router
from meal_logger.api.meals import router as meals_router
from meal_logger.app_logging import configure_logging
from meal_logger.containers import AppContainer


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.container.meal_store.ensure_schema()
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(meals_router)
    app.include_router(analysis_router)
    app.include_router(auth_router)
    app.include_router(conversations_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = [_describe(error) for error in exc.errors()]
        return JSONResponse(
            {"error": "Validation failed", "details": details},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error", extra={"path": request.url.path}, exc_info=exc
        )
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.get("/health")
    async def health(request: Request) -> dict[str, str]:
        """Report liveness and the active storage backend."""
        state_container: AppContainer = request.app.state.container
        return {"status": "ok", "storage": state_container.meal_store.backend_name}

    @app.post("/setup-db")
    async def setup_db(request: Request) -> dict[str, object]:
        """Create the tables when missing."""
        state_container: AppContainer = request.app.state.container
        store = state_container.meal_store
        if store.primary is None:
            return {
                "success": True,
                "message": "No database configured, using in-memory storage",
                "storage": store.backend_name,
            }
        store.ensure_schema()
        if store.using_fallback:
            return {
                "success": False,
                "error": "Database setup failed, using in-memory storage",
                "storage": store.backend_name,
            }
        return {
            "success": True,
            "message": "Database setup complete",
            "storage": store.backend_name,
        }

    return app


def _describe(error: dict[str, Any]) -> str:
    fields = [
        str(part)
        for part in error.get("loc", ())
        if part not in {"body", "query", "path", "header"}
    ]
    message = str(error.get("msg", "Invalid value"))
    return f"{'.'.join(fields)}: {message}" if fields else message
