"""
Main FastAPI application for the Messages API proxy.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .backend_client import BackendTransport
from .config import APP_DESCRIPTION, APP_NAME, APP_VERSION, ProxyConfig
from .errors import ProxyError, create_error_envelope
from .http_client import close_http_client, create_http_client
from .models import ModelAliasTable
from .routes import anthropic_router

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            message = f"endpoint not found: {request.url.path}"
            error_type = "invalid_request_error"
        elif exc.status_code == 405:
            message = f"method not allowed: {request.method}"
            error_type = "invalid_request_error"
        else:
            message = str(exc.detail)
            error_type = "invalid_request_error" if exc.status_code < 500 else "api_error"
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_envelope(message, error_type),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=create_error_envelope(f"invalid request: {exc.errors()}", "invalid_request_error"),
        )


def create_app(
    config: Optional[ProxyConfig] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Settings; loaded from the environment (and ``.env``) if omitted
        http_client: Pre-built client to use for the backend; when omitted one
            is created on startup and closed on shutdown

    Returns:
        The configured application
    """
    if config is None:
        load_dotenv()
        config = ProxyConfig.from_env()

    model_aliases = ModelAliasTable.default().with_overrides(config.model_aliases)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(f"Starting {APP_NAME} v{APP_VERSION}, backend: {config.backend_base_url}")
        client = http_client or create_http_client(config)
        app.state.transport = BackendTransport(
            config, client, logger=logging.getLogger("src.backend_client")
        )
        yield
        logger.info("Shutting down...")
        if http_client is None:
            await close_http_client(client)

    app = FastAPI(
        title=APP_NAME,
        version=APP_VERSION,
        description=APP_DESCRIPTION,
        lifespan=lifespan,
        debug=config.debug,
    )
    app.state.config = config
    app.state.model_aliases = model_aliases

    if config.enable_cors:
        origins = list(config.cors_allow_origins)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials="*" not in origins,
            allow_methods=list(config.cors_allow_methods),
            allow_headers=list(config.cors_allow_headers),
        )

    _register_exception_handlers(app)

    @app.get("/")
    async def root() -> Dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": APP_NAME,
            "description": APP_DESCRIPTION,
            "version": APP_VERSION,
            "endpoints": {
                "messages": "/v1/messages",
                "health": "/health",
                "info": "/info",
            },
            "authentication": "Required for /v1 endpoints" if config.auth_key else "Disabled",
        }

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": int(time.time()), "version": APP_VERSION}

    @app.get("/info")
    async def info() -> Dict[str, Any]:
        """Service information and supported model aliases."""
        return {
            "service": APP_NAME,
            "version": APP_VERSION,
            "description": APP_DESCRIPTION,
            "endpoints": ["POST /v1/messages", "GET /health", "GET /info"],
            "supported_models": model_aliases.supported_models(),
        }

    app.include_router(anthropic_router)
    return app
