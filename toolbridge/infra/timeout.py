"""Request timeout configuration and middleware."""

import asyncio
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce request timeouts.

    Event-stream endpoints are long-lived by design and are passed through.
    """

    def __init__(self, app, timeout: int = 60, exempt_suffixes: tuple = ("/stream",)):
        """
        Initialize timeout middleware.

        Args:
            app: FastAPI application
            timeout: Request timeout in seconds (default: 60)
            exempt_suffixes: Path suffixes that are never timed out
        """
        super().__init__(app)
        self.timeout = timeout
        self.exempt_suffixes = exempt_suffixes

    async def dispatch(self, request: Request, call_next):
        """Process request with timeout."""
        if request.url.path.endswith(self.exempt_suffixes):
            return await call_next(request)

        try:
            response = await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout
            )
            return response
        except asyncio.TimeoutError:
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={"detail": f"Request timeout after {self.timeout} seconds"},
            )


# Timeout configurations
REQUEST_TIMEOUT = 60  # 60 seconds for general requests
LLM_CALL_TIMEOUT = 60  # 1 minute for a single AI backend completion
AI_NORMALIZATION_TIMEOUT = 20  # Upper bound for the AI extraction step of a tool call
TOOL_EXECUTION_TIMEOUT = 30  # 30 seconds for outbound tool calls
