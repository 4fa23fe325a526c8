"""FastAPI application exposing merchant APIs as MCP servers."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolbridge.infra.config import config
from toolbridge.infra.error_handler import ToolbridgeError
from toolbridge.infra.logging import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    # Startup
    app_logger.info("Application starting up", extra={"app_env": config.APP_ENV})

    yield

    # Shutdown
    app_logger.info("Application shutting down")

    # Close database connections
    from toolbridge.infra.database import dispose_engine
    dispose_engine()


# Create app with lifespan
app = FastAPI(
    title="Toolbridge API",
    description="""
    Toolbridge turns each merchant's stored HTTP API templates into a dynamic MCP
    (Model Context Protocol) server that AI agents can discover and call.

    ## Features

    - **Tool Discovery**: Tool schemas derived from templates on every request
    - **Tool Execution**: Templates rendered with call arguments and sent to the merchant API
    - **Normalization**: Arbitrary JSON responses reduced to a canonical products list
    - **MCP Protocol**: JSON-RPC 2.0 endpoint and a Server-Sent Events stream per merchant
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "MCP Servers",
            "description": "Per-merchant MCP servers: discovery, direct tool calls, JSON-RPC and event streams",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from toolbridge.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors
from toolbridge.infra.timeout import TimeoutMiddleware, REQUEST_TIMEOUT

# Last added runs first: the request id must exist before request logging
app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
setup_cors(app)

# Import and register routers
from toolbridge.api.routers import health, mcp

app.include_router(health.router)
app.include_router(mcp.router)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=app.openapi_tags,
    )
    openapi_schema["info"]["x-mcp-protocol-version"] = "2024-11-05"

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

MAX_REQUEST_SIZE = 1024 * 1024  # 1MB


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next):
    """Enforce request size limits."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
        return JSONResponse(
            status_code=413,
            content={"detail": f"Request too large. Maximum size: {MAX_REQUEST_SIZE} bytes"},
        )
    return await call_next(request)


# Error handlers
@app.exception_handler(ToolbridgeError)
async def toolbridge_exception_handler(request: Request, exc: ToolbridgeError):
    """Lookup failures (unknown merchant, unknown tool) keep their HTTP-style status."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(), "body": exc.body},
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
