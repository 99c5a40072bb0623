"""FastAPI application for the tool lifecycle and execution service."""

import signal
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from callhub.infra.config import config
from callhub.infra.error_handler import ErrorCategory, ToolServiceError, ValidationFailed
from callhub.infra.logging import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info("Application starting up", extra={"app_env": config.APP_ENV})

    yield

    app_logger.info("Application shutting down")

    from callhub.infra.database import engine
    engine.dispose()


app = FastAPI(
    title="CallHub Tools API",
    description="""
    CallHub Tools manages the tools a voice agent can use and runs them during calls.

    ## Features

    - **Tool Management**: Create, update, and delete tools, kept in sync with the voice platform
    - **Agent Tools**: Attach tools to agents through the assistant tool list or local attachment
    - **Tool Execution**: Callback endpoint the voice platform calls when the AI invokes a tool
    - **Call-Start Tools**: Run tools when a call connects and inject the results into the conversation

    ## Authentication

    Management endpoints expect the upstream gateway to forward the caller's
    organization in `X-Organization-ID` (and optionally `X-User-ID`).
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Tools",
            "description": "Create, update, delete, and inspect organization tools",
        },
        {
            "name": "Agent Tools",
            "description": "Attach and detach tools to agents, list an agent's tools",
        },
        {
            "name": "Tool Execution",
            "description": "Voice platform callbacks: tool execution and call-start tools",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from callhub.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, TimeoutMiddleware, setup_cors

app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout=config.REQUEST_TIMEOUT_SECONDS)
setup_cors(app)

# Register routers
from callhub.api.routers import agent_tools, health, tool_execution, tools

app.include_router(tools.router)
app.include_router(agent_tools.router)
app.include_router(tool_execution.router)
app.include_router(health.router)


ERROR_STATUS_CODES = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.UNAUTHORIZED: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.EXTERNAL_PLATFORM: 502,
    ErrorCategory.ACTION_PROVIDER: 502,
    ErrorCategory.MESSAGING_PROVIDER: 502,
    ErrorCategory.PERSISTENCE: 500,
}


# Error handlers
@app.exception_handler(ToolServiceError)
async def tool_service_exception_handler(request: Request, exc: ToolServiceError):
    """Map the error taxonomy onto HTTP status codes."""
    status_code = ERROR_STATUS_CODES.get(exc.category, 500)
    content = {
        "detail": exc.message,
        "error_type": type(exc).__name__,
        "retryable": exc.retryable,
    }
    if isinstance(exc, ValidationFailed):
        content["errors"] = exc.errors
    if status_code >= 500:
        app_logger.error(
            f"Request failed: {exc.message}",
            extra={"error_type": type(exc).__name__, "path": request.url.path},
        )
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
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

    def signal_handler(sig, frame):
        app_logger.info("Shutting down gracefully")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
