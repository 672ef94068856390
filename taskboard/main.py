import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskboard import __version__
from taskboard.core.config import settings
from taskboard.core.database import init_db
from taskboard.core.exceptions import ValidationError, format_validation_errors
from taskboard.core.logging_config import setup_logging
from taskboard.schemas.common.response import ErrorResponse
from taskboard.middleware.logging import LoggingMiddleware
from taskboard.api.v1.api import api_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    Path(settings.UPLOAD_PATH).mkdir(parents=True, exist_ok=True)
    await init_db()
    logger.info(f"Taskboard API started in {settings.ENVIRONMENT} mode")
    yield
    logger.info("Taskboard API shutting down")


# Create FastAPI app
app_config = {
    "title": "Taskboard API",
    "description": "Personal task management with file attachments",
    "version": __version__,
    "lifespan": lifespan,
}

app = FastAPI(**app_config)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=settings.ALLOWED_METHODS,
    allow_headers=settings.ALLOWED_HEADERS,
)
app.add_middleware(LoggingMiddleware)


def _error_response(status_code: int, message: str, errors=None, headers=None) -> JSONResponse:
    body = ErrorResponse(message=message, errors=errors or None)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    errors = exc.errors if isinstance(exc, ValidationError) else None
    return _error_response(exc.status_code, exc.detail, errors, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "Validation failed",
        format_validation_errors(exc.errors()),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred")


# Include routers
app.include_router(api_router, prefix="/api/v1")

@app.get("/")
async def root():
    return {
        "message": "Welcome to the Taskboard API",
        "status": "active",
        "version": __version__,
        "docs": "/docs",
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def run_http():
    """Run HTTP server"""
    import uvicorn
    uvicorn.run(
        "taskboard.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run_http()
