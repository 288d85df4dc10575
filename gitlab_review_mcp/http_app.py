"""
FastAPI wrapper for the streamable-http transport.

- Bearer Token Auth Middleware for /mcp (MCP_SERVER_TOKEN)
- MCP mount, endpoint /mcp
- Healthcheck unter /health
"""
from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from . import __version__
from .config import Settings
from .env_utils import is_production_env
from .server import mcp, registered_tool_names

logger = logging.getLogger("gitlab_review_mcp.http_app")


class BearerTokenAuthMiddleware(BaseHTTPMiddleware):
    """Middleware für Bearer Token Authentication."""

    def __init__(self, app: ASGIApp, expected_token: Optional[str] = None) -> None:
        super().__init__(app)
        self.expected_token = (expected_token or "").strip()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        # Only /mcp is protected; /health stays public.
        if not path.startswith("/mcp"):
            return await call_next(request)

        if is_production_env() and not self.expected_token:
            logger.error("[Auth] MCP_SERVER_TOKEN not set in production")
            return JSONResponse(
                {"error": "server_error", "message": "MCP_SERVER_TOKEN not configured"},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        if self.expected_token:
            auth_header = request.headers.get("authorization", "")
            if not auth_header.startswith("Bearer "):
                logger.warning(f"[Auth] Missing or invalid Authorization header for {request.method} {path}")
                return JSONResponse(
                    {"error": "unauthorized", "message": "Missing or invalid Authorization header"},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": "Bearer"},
                )
            token = auth_header[len("Bearer "):]
            if not hmac.compare_digest(token, self.expected_token):
                logger.warning(f"[Auth] Invalid token for {request.method} {path}")
                return JSONResponse(
                    {"error": "unauthorized", "message": "Invalid token"},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": "Bearer"},
                )

        return await call_next(request)


def create_app(settings: Settings) -> FastAPI:
    """
    Build the FastAPI app serving the MCP server over streamable HTTP.

    FastMCP's session manager only exists after streamable_http_app() has
    been called, so the sub-app is built before the lifespan references it.
    """
    mcp_app = mcp.streamable_http_app()

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with mcp.session_manager.run():
            yield

    app = FastAPI(
        title="GitLab Review MCP Server",
        description="MCP tools for GitLab projects, merge requests, discussions and issues",
        version=__version__,
        lifespan=app_lifespan,
    )
    app.add_middleware(BearerTokenAuthMiddleware, expected_token=settings.server_token)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "ok": True,
            "status": "healthy",
            "server": settings.server_name,
            "tool_count": len(registered_tool_names(mcp)),
        }

    # Registered last: the mounted app serves /mcp and must not shadow /health.
    app.mount("/", mcp_app)
    return app
