"""
Main entry point for the GitLab review MCP server.

Transports:
- stdio (default): the MCP client spawns this process
- streamable-http: FastAPI app on MCP_SERVER_HOST:MCP_SERVER_PORT, endpoint /mcp
"""
from __future__ import annotations

import sys

import uvicorn

from .config import load_settings
from .errors import ConfigurationError
from .server import CONFIG, mcp, setup_logger


def main() -> None:
    """Validate configuration, then start the server on the configured transport."""
    # Nothing may be printed to stdout here: over stdio it carries the protocol.
    try:
        settings = load_settings(CONFIG)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    logger = setup_logger(settings)
    try:
        if settings.transport == "stdio":
            logger.info("Starting MCP server on stdio")
            mcp.run(transport="stdio")
            return

        from .http_app import create_app

        app = create_app(settings)
        logger.info(f"Starting MCP server on http://{settings.host}:{settings.port}/mcp")
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
            server_header=False,
        )
    except KeyboardInterrupt:
        print("\nServer shutdown requested...", file=sys.stderr)
        sys.exit(0)
    except Exception as e:
        print(f"Failed to start MCP server: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
